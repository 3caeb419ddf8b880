"""
Hybrid strategy engine.

Decides which AI analysis to run for a broken selector, in what order, and
whether its answer is good enough. Fallback order for every sequential
policy is a plain table (``STRATEGY_PLANS``); each analysis produces an
``AnalysisOutcome`` instead of driving control flow with exceptions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import (
    AdapterError, AmbiguousResultError, CircuitBreakerOpenError,
    ElementNotFoundError, UnsupportedOperationError
)
from ..core.logging_config import get_healing_logger
from ..core.models.healing_models import (
    AIAnalysisResult, ExecutionStrategy, HealingConfiguration,
    LocateRequest, PageSnapshot, ResolutionStrategy
)
from .ai_service import AIService
from .automation_adapter import AutomationAdapter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanStep:
    """One analysis in a fallback chain."""
    method: ResolutionStrategy
    validate: bool


DOM = ResolutionStrategy.DOM_ANALYSIS
VISUAL = ResolutionStrategy.VISUAL_ANALYSIS

STRATEGY_PLANS: Dict[ExecutionStrategy, Tuple[PlanStep, ...]] = {
    ExecutionStrategy.DOM_ONLY: (
        PlanStep(DOM, validate=False),
    ),
    ExecutionStrategy.SEQUENTIAL: (
        PlanStep(DOM, validate=False),
        PlanStep(VISUAL, validate=False),
    ),
    ExecutionStrategy.SMART_SEQUENTIAL: (
        PlanStep(DOM, validate=True),
        PlanStep(VISUAL, validate=False),
    ),
    ExecutionStrategy.VISUAL_FIRST: (
        PlanStep(VISUAL, validate=True),
        PlanStep(DOM, validate=False),
    ),
}


@dataclass
class AnalysisOutcome:
    """Result of running one analysis, successful or not."""
    method: ResolutionStrategy
    analysis: Optional[AIAnalysisResult] = None
    elements: Optional[List[Any]] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.analysis is not None


@dataclass(frozen=True)
class HealingResult:
    """Healed locator produced by the engine.

    ``elements`` holds the single live match when the locator was
    validated, None when the caller still has to resolve it.
    """
    selector: str
    strategy: ResolutionStrategy
    confidence: float
    reasoning: str
    elements: Optional[List[Any]] = None
    attempted: List[str] = field(default_factory=list)


class _PageState:
    """Lazily captured page snapshot shared by the analyses of one heal."""

    def __init__(self, adapter: AutomationAdapter, snapshot: Optional[PageSnapshot] = None):
        self.adapter = adapter
        self._snapshot = snapshot
        self._lock = asyncio.Lock()

    async def snapshot(self) -> PageSnapshot:
        async with self._lock:
            if self._snapshot is None:
                self._snapshot = await self.adapter.get_page_snapshot(include_screenshot=False)
            return self._snapshot

    async def screenshot(self) -> bytes:
        async with self._lock:
            if self._snapshot is None or self._snapshot.screenshot is None:
                self._snapshot = await self.adapter.get_page_snapshot(include_screenshot=True)
            if not self._snapshot.screenshot:
                raise UnsupportedOperationError("Automation adapter did not provide a screenshot")
            return self._snapshot.screenshot


class HybridStrategyEngine:
    """
    Runs the configured execution strategy against the AI service.

    Args:
        ai_service: AI service, normally a ``ResilientAIService`` so every call
            passes through the circuit breaker
        adapter: Automation adapter used for snapshots and live validation
        config: Engine configuration (strategy and validation timeout)
    """

    def __init__(self, ai_service: AIService, adapter: AutomationAdapter, config: HealingConfiguration):
        self.ai_service = ai_service
        self.adapter = adapter
        self.config = config
        self.strategy = config.execution_strategy

    async def heal(self, request: LocateRequest, snapshot: Optional[PageSnapshot] = None) -> HealingResult:
        """
        Produce a healed locator for ``request``.

        Args:
            request: The failed lookup
            snapshot: Page snapshot, captured on demand when omitted

        Returns:
            HealingResult of the analysis that satisfied the policy

        Raises:
            ElementNotFoundError: Every analysis in the policy failed
            CircuitBreakerOpenError: The AI service is unavailable
            AdapterError: The automation framework failed
        """
        page = _PageState(self.adapter, snapshot)
        log = get_healing_logger("strategy", selector=request.original_selector)
        log.log_stage("heal", "start", strategy=self.strategy.value)

        if self.strategy == ExecutionStrategy.PARALLEL:
            return await self._heal_parallel(request, page)
        return await self._heal_sequential(request, page, STRATEGY_PLANS[self.strategy])

    async def _heal_sequential(
        self,
        request: LocateRequest,
        page: _PageState,
        plan: Tuple[PlanStep, ...]
    ) -> HealingResult:
        attempted: List[str] = []
        last_error: Optional[BaseException] = None

        for step in plan:
            attempted.append(step.method.value)
            outcome = await self._run_step(step, request, page, attempted)
            if outcome.succeeded:
                return self._to_result(outcome, attempted)
            last_error = outcome.error
            logger.warning(f"{step.method.value} did not heal {request.original_selector!r}: {last_error}")

        raise ElementNotFoundError(
            "All healing strategies failed",
            selector=request.original_selector,
            description=request.description,
            attempted=attempted,
            cause=last_error
        )

    async def _heal_parallel(self, request: LocateRequest, page: _PageState) -> HealingResult:
        attempted = [DOM.value, VISUAL.value]
        dom_outcome, visual_outcome = await asyncio.gather(
            self._run_step(PlanStep(DOM, validate=True), request, page, attempted),
            self._run_step(PlanStep(VISUAL, validate=True), request, page, attempted),
            return_exceptions=True
        )
        outcomes = (dom_outcome, visual_outcome)

        for outcome in outcomes:
            if isinstance(outcome, AdapterError):
                raise outcome

        for outcome in outcomes:
            if isinstance(outcome, AnalysisOutcome) and outcome.succeeded:
                return self._to_result(outcome, attempted)

        for outcome in outcomes:
            if isinstance(outcome, CircuitBreakerOpenError):
                raise outcome
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        errors = [o.error if isinstance(o, AnalysisOutcome) else o for o in outcomes]
        logger.warning(f"Both parallel analyses failed for {request.original_selector!r}: {errors}")
        raise ElementNotFoundError(
            "DOM and visual analysis both failed",
            selector=request.original_selector,
            description=request.description,
            attempted=attempted,
            cause=errors[0] or errors[1]
        )

    async def _run_step(
        self,
        step: PlanStep,
        request: LocateRequest,
        page: _PageState,
        attempted: List[str]
    ) -> AnalysisOutcome:
        """Run one analysis and, when asked, validate it live."""
        try:
            if step.method == DOM:
                snapshot = await page.snapshot()
                analysis = await self.ai_service.analyze_dom(
                    snapshot, request.description, request.original_selector
                )
            else:
                if not self.ai_service.supports_visual_analysis:
                    raise UnsupportedOperationError("Visual analysis is not available")
                screenshot = await page.screenshot()
                analysis = await self.ai_service.analyze_visual(screenshot, request.description)

            if not step.validate:
                return AnalysisOutcome(step.method, analysis=analysis)

            elements = await self._validate(analysis.selector)
            return AnalysisOutcome(step.method, analysis=analysis, elements=elements)

        except CircuitBreakerOpenError as e:
            raise e.with_context(request.original_selector, request.description, list(attempted))
        except AdapterError as e:
            raise e.with_context(request.original_selector, request.description, list(attempted))
        except Exception as e:
            return AnalysisOutcome(step.method, error=e)

    async def _validate(self, selector: str) -> List[Any]:
        """Require ``selector`` to resolve to exactly one element."""
        try:
            elements = await asyncio.wait_for(
                self.adapter.find_elements(selector),
                timeout=self.config.validation_timeout
            )
        except asyncio.TimeoutError as e:
            raise ElementNotFoundError(
                f"Validation timed out after {self.config.validation_timeout}s", selector=selector, cause=e
            ) from e

        if not elements:
            raise ElementNotFoundError("Healed locator matched no elements", selector=selector)
        if len(elements) > 1:
            raise AmbiguousResultError(f"Healed locator matched {len(elements)} elements", selector=selector)
        return list(elements)

    @staticmethod
    def _to_result(outcome: AnalysisOutcome, attempted: List[str]) -> HealingResult:
        analysis = outcome.analysis
        return HealingResult(
            selector=analysis.selector,
            strategy=outcome.method,
            confidence=analysis.confidence,
            reasoning=analysis.reasoning,
            elements=outcome.elements,
            attempted=list(attempted)
        )
