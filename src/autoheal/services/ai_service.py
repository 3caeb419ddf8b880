"""
AI service contract and the resilience wrapper placed in front of it.

The wrapper owns every policy concern (circuit breaker, timeout, retries,
concurrency limit, metrics) so concrete providers only talk to a model.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..core.exceptions import AIServiceError, CircuitBreakerOpenError, UnsupportedOperationError
from ..core.metrics import AIServiceMetrics
from ..core.models.healing_models import (
    AIAnalysisResult, CandidateSummary, HealingConfiguration, PageSnapshot
)
from .circuit_breaker import CircuitBreaker


logger = logging.getLogger(__name__)

T = TypeVar("T")


class AIService(ABC):
    """Proposes locators from page content and picks among candidates."""

    @property
    def supports_visual_analysis(self) -> bool:
        return False

    @abstractmethod
    async def analyze_dom(
        self,
        snapshot: PageSnapshot,
        description: str,
        previous_selector: Optional[str] = None
    ) -> AIAnalysisResult:
        """Propose a locator for ``description`` from the page HTML."""

    async def analyze_visual(self, screenshot: bytes, description: str) -> AIAnalysisResult:
        """Propose a locator for ``description`` from a screenshot."""
        raise UnsupportedOperationError("Visual analysis is not supported by this AI service")

    @abstractmethod
    async def select_best_matching_element(
        self,
        candidates: List[CandidateSummary],
        description: str
    ) -> int:
        """Return the 0-based index of the candidate matching ``description``."""

    async def close(self) -> None:
        pass


class ResilientAIService(AIService):
    """Decorates an ``AIService`` with breaker, timeout, retry and bulkhead.

    Args:
        delegate: Provider that performs the actual model calls
        circuit_breaker: Breaker shared with the rest of the engine
        config: Engine configuration (timeouts, retries, concurrency)
    """

    def __init__(
        self,
        delegate: AIService,
        circuit_breaker: CircuitBreaker,
        config: HealingConfiguration,
        metrics: Optional[AIServiceMetrics] = None
    ):
        self.delegate = delegate
        self.circuit_breaker = circuit_breaker
        self.config = config
        self.metrics = metrics or AIServiceMetrics()
        self._semaphore = asyncio.Semaphore(config.max_concurrent_ai_calls)

    @property
    def supports_visual_analysis(self) -> bool:
        return self.config.visual_analysis_enabled and self.delegate.supports_visual_analysis

    async def analyze_dom(
        self,
        snapshot: PageSnapshot,
        description: str,
        previous_selector: Optional[str] = None
    ) -> AIAnalysisResult:
        return await self._call(
            "analyze_dom",
            lambda: self.delegate.analyze_dom(snapshot, description, previous_selector)
        )

    async def analyze_visual(self, screenshot: bytes, description: str) -> AIAnalysisResult:
        if not self.config.visual_analysis_enabled:
            raise UnsupportedOperationError("Visual analysis is disabled by configuration")
        if not self.delegate.supports_visual_analysis:
            raise UnsupportedOperationError(
                f"{type(self.delegate).__name__} does not support visual analysis"
            )
        return await self._call(
            "analyze_visual",
            lambda: self.delegate.analyze_visual(screenshot, description)
        )

    async def select_best_matching_element(
        self,
        candidates: List[CandidateSummary],
        description: str
    ) -> int:
        return await self._call(
            "select_best_matching_element",
            lambda: self.delegate.select_best_matching_element(candidates, description)
        )

    async def close(self) -> None:
        await self.delegate.close()

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run one logical AI operation with retries under the breaker."""
        admitted = self.circuit_breaker.acquire()
        if admitted is None:
            self.metrics.record_rejection(operation)
            raise CircuitBreakerOpenError(
                f"AI service unavailable, circuit breaker is {self.circuit_breaker.state.value}"
            )

        start_time = time.time()
        last_error: Optional[BaseException] = None
        attempts = max(1, self.config.ai_max_retries)

        try:
            for attempt in range(attempts):
                try:
                    async with self._semaphore:
                        result = await asyncio.wait_for(factory(), timeout=self.config.ai_timeout)
                    self.circuit_breaker.record_success(admitted)
                    self.metrics.record_request(operation, True, time.time() - start_time)
                    return result

                except UnsupportedOperationError:
                    self.circuit_breaker.release_probe(admitted)
                    raise

                except asyncio.TimeoutError as e:
                    last_error = e
                    logger.warning(
                        f"AI {operation} timed out after {self.config.ai_timeout}s "
                        f"(attempt {attempt + 1}/{attempts})"
                    )

                except Exception as e:
                    last_error = e
                    logger.warning(f"AI {operation} failed (attempt {attempt + 1}/{attempts}): {e}")

                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.ai_retry_backoff * (attempt + 1))

        except asyncio.CancelledError:
            self.circuit_breaker.release_probe(admitted)
            raise

        self.circuit_breaker.record_failure(admitted)
        self.metrics.record_request(operation, False, time.time() - start_time)
        raise AIServiceError(
            f"AI {operation} failed after {attempts} attempts",
            cause=last_error
        )
