"""
Healing Orchestrator for the self-healing locator engine.

This service runs the per-request pipeline (original selector, selector
cache, AI healing) and exposes the public lookup, cache management and
observability operations of an engine instance.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from ..core.exceptions import (
    AutoHealError, ElementNotFoundError, LocateTimeoutError
)
from ..core.locator_utils import CacheKeyGenerator
from ..core.logging_config import HealingLoggerAdapter, get_healing_logger
from ..core.metrics import LocatorMetrics
from ..core.models.healing_models import (
    CachedSelector, CacheMetrics, HealingConfiguration, HealthStatus,
    LocateOptions, LocateRequest, LocateResult, ResolutionStrategy
)
from .ai_service import AIService, ResilientAIService
from .automation_adapter import AutomationAdapter
from .circuit_breaker import CircuitBreaker
from .disambiguator import Disambiguator
from .hybrid_strategy_engine import HybridStrategyEngine
from .selector_cache import SelectorCache, create_selector_cache


logger = logging.getLogger(__name__)

HEALTHY_SUCCESS_RATE = 0.8


class HealingOrchestrator:
    """Self-healing element locator for one automation session."""

    def __init__(
        self,
        adapter: AutomationAdapter,
        ai_service: AIService,
        cache: SelectorCache,
        config: Optional[HealingConfiguration] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        key_generator: Optional[CacheKeyGenerator] = None
    ):
        """Initialize the orchestrator.

        Args:
            adapter: Automation adapter for the browser session
            ai_service: AI service; wrapped in ``ResilientAIService`` unless it already is one
            cache: Selector cache backend
            config: Engine configuration, defaults when omitted
            circuit_breaker: Breaker to use when wrapping ``ai_service``
            key_generator: Cache key strategy, built from ``config`` when omitted
        """
        self.config = config or HealingConfiguration()
        self.adapter = adapter
        self.cache = cache

        if isinstance(ai_service, ResilientAIService):
            self.ai_service = ai_service
        else:
            breaker = circuit_breaker or CircuitBreaker(
                failure_threshold=self.config.circuit_breaker_failure_threshold,
                open_timeout=self.config.circuit_breaker_open_timeout
            )
            self.ai_service = ResilientAIService(ai_service, breaker, self.config)
        self.circuit_breaker = self.ai_service.circuit_breaker

        self.key_generator = key_generator or CacheKeyGenerator(version=self.config.cache_key_version)
        self.disambiguator = Disambiguator(
            self.ai_service, adapter, timeout=self.config.disambiguation_timeout
        )
        self.strategy_engine = HybridStrategyEngine(self.ai_service, adapter, self.config)
        self.metrics = LocatorMetrics()

        logger.info(
            f"Healing orchestrator initialized with {self.config.execution_strategy.value} strategy "
            f"and {type(cache).__name__}"
        )

    @classmethod
    def from_config(
        cls,
        adapter: AutomationAdapter,
        config: HealingConfiguration,
        ai_service: Optional[AIService] = None,
        cache: Optional[SelectorCache] = None
    ) -> 'HealingOrchestrator':
        """Build an orchestrator with the default collaborators for ``config``.

        The AI service defaults to LiteLLM with the model and credentials
        from the environment settings.
        """
        if ai_service is None:
            from ..core.config import settings
            from .llm_ai_service import LiteLLMAIService

            ai_service = LiteLLMAIService(
                model=settings.AUTOHEAL_AI_MODEL,
                api_key=settings.AUTOHEAL_AI_API_KEY,
                api_base=settings.AUTOHEAL_AI_API_BASE,
                max_html_chars=config.max_html_chars
            )
        if cache is None:
            cache = create_selector_cache(config)
        return cls(adapter, ai_service, cache, config)

    async def locate(self, request: LocateRequest) -> LocateResult:
        """Locate an element, healing the selector when it no longer matches.

        Args:
            request: The lookup to perform

        Returns:
            LocateResult with the element and the stage that produced it

        Raises:
            ElementNotFoundError: Every stage was exhausted
            LocateTimeoutError: The request deadline elapsed first
            CircuitBreakerOpenError: Healing was needed but the AI service is unavailable
            AdapterError: The automation framework failed
        """
        request_id = str(uuid.uuid4())[:8]
        healing_logger = get_healing_logger("orchestrator", request_id, request.original_selector)
        timeout = request.options.timeout or self.config.locate_timeout
        attempted: List[str] = []
        start_time = time.time()

        healing_logger.log_operation_start(
            "locate", description=request.description, context=request.context, timeout=timeout
        )

        try:
            result = await asyncio.wait_for(
                self._run_pipeline(request, attempted, healing_logger, start_time),
                timeout=timeout
            )

        except asyncio.TimeoutError as e:
            duration = time.time() - start_time
            self.metrics.record_failure("TIMEOUT", duration)
            healing_logger.log_operation_failure(
                "locate", duration, f"timed out after {timeout}s", error_code="TIMEOUT"
            )
            raise LocateTimeoutError(
                f"Locate timed out after {timeout}s",
                selector=request.original_selector,
                description=request.description,
                attempted=attempted,
                cause=e
            ) from e

        except AutoHealError as e:
            duration = time.time() - start_time
            e.with_context(request.original_selector, request.description, attempted)
            error_code = type(e).__name__
            self.metrics.record_failure(error_code, duration)
            healing_logger.log_operation_failure("locate", duration, str(e), error_code=error_code)
            raise

        self.metrics.record_success(result.strategy, result.execution_time)
        healing_logger.log_operation_success(
            "locate", result.execution_time, strategy=result.strategy.value,
            actual_selector=result.actual_selector, from_cache=result.from_cache
        )
        return result

    async def _run_pipeline(
        self,
        request: LocateRequest,
        attempted: List[str],
        healing_logger: HealingLoggerAdapter,
        start_time: float
    ) -> LocateResult:
        caching = request.options.enable_caching
        key = self.key_generator.generate(request)

        # Stage 1: the selector as written
        attempted.append(ResolutionStrategy.ORIGINAL.value)
        healing_logger.log_stage("locate", "original")
        elements = await self.adapter.find_elements(request.original_selector)
        if elements:
            element = await self.disambiguator.pick(elements, request.description)
            if caching:
                await self._remember(key, request.original_selector, element)
            return self._build_result(
                element, request.original_selector, ResolutionStrategy.ORIGINAL,
                1.0, "Original selector matched", start_time
            )

        # Stage 2: a previously successful selector for this request
        if caching:
            attempted.append(ResolutionStrategy.CACHED.value)
            healing_logger.log_stage("locate", "cache", key=key)
            cached = await self._try_cache(key, request, healing_logger)
            if cached is not None:
                element, entry = cached
                return self._build_result(
                    element, entry.selector, ResolutionStrategy.CACHED,
                    entry.current_success_rate,
                    f"Cached selector with success rate {entry.current_success_rate:.2f}",
                    start_time, from_cache=True
                )

        # Stage 3: AI healing
        healing_logger.log_stage("locate", "heal", strategy=self.config.execution_strategy.value)
        try:
            healing = await self.strategy_engine.heal(request)
        except AutoHealError as e:
            e.attempted = attempted + [step for step in e.attempted if step not in attempted]
            raise

        attempted.extend(step for step in healing.attempted if step not in attempted)
        elements = healing.elements
        if elements is None:
            elements = await self._resolve_healed(healing.selector)
        if not elements:
            raise ElementNotFoundError(
                "Healed locator matched no elements",
                selector=request.original_selector,
                description=request.description,
                attempted=list(attempted)
            )

        element = await self.disambiguator.pick(elements, request.description)
        if caching:
            await self._remember(key, healing.selector, element)

        logger.info(
            f"Healed {request.original_selector!r} -> {healing.selector!r} "
            f"via {healing.strategy.value} (confidence {healing.confidence:.2f})"
        )
        return self._build_result(
            element, healing.selector, healing.strategy,
            healing.confidence, healing.reasoning, start_time
        )

    async def _try_cache(
        self,
        key: str,
        request: LocateRequest,
        healing_logger: HealingLoggerAdapter
    ) -> Optional[tuple]:
        """Probe the cache; returns ``(element, entry)`` when a cached selector still works."""
        try:
            entry = await asyncio.wait_for(self.cache.get(key), timeout=self.config.cache_probe_timeout)
        except asyncio.TimeoutError:
            healing_logger.warning(f"Cache lookup timed out after {self.config.cache_probe_timeout}s")
            return None
        except Exception as e:
            healing_logger.warning(f"Cache lookup failed: {e}")
            return None

        if entry is None:
            healing_logger.log_stage("locate", "cache_miss")
            return None

        if not entry.is_trusted(self.config.cache_trust_threshold):
            healing_logger.log_stage(
                "locate", "cache_untrusted",
                cached_selector=entry.selector, success_rate=entry.current_success_rate
            )
            return None

        element = await self._probe_cached(entry, request, healing_logger)
        if element is None:
            await self._record_cache_outcome(key, False)
            return None

        await self._record_cache_outcome(key, True)
        return element, entry

    async def _probe_cached(
        self,
        entry: CachedSelector,
        request: LocateRequest,
        healing_logger: HealingLoggerAdapter
    ) -> Optional[Any]:
        """Re-resolve a cached selector live and check it still targets the same element."""
        try:
            elements = await asyncio.wait_for(
                self.adapter.find_elements(entry.selector),
                timeout=self.config.cache_probe_timeout
            )
        except asyncio.TimeoutError:
            healing_logger.warning(
                f"Cached selector {entry.selector!r} probe timed out after {self.config.cache_probe_timeout}s"
            )
            return None

        if not elements:
            healing_logger.log_stage("locate", "cache_stale", cached_selector=entry.selector)
            return None

        element = await self.disambiguator.pick(elements, request.description)

        if self.config.verify_fingerprint and entry.fingerprint is not None:
            try:
                live = await asyncio.wait_for(
                    self.adapter.get_element_context(element),
                    timeout=self.config.cache_probe_timeout
                )
            except asyncio.TimeoutError:
                healing_logger.warning(f"Fingerprint check of {entry.selector!r} timed out")
                return None
            except Exception as e:
                healing_logger.warning(f"Fingerprint check of {entry.selector!r} failed: {e}")
                return None
            if not entry.fingerprint.is_same_element(live):
                healing_logger.warning(
                    f"Cached selector {entry.selector!r} now targets a different element"
                )
                return None

        return element

    async def _resolve_healed(self, selector: str) -> List[Any]:
        try:
            return await asyncio.wait_for(
                self.adapter.find_elements(selector),
                timeout=self.config.validation_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Resolving healed selector {selector!r} timed out")
            return []

    async def _record_cache_outcome(self, key: str, success: bool):
        try:
            await asyncio.wait_for(
                self.cache.update_success(key, success),
                timeout=self.config.cache_probe_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to update cache counters for {key}: {e}")

    async def _remember(self, key: str, selector: str, element: Any):
        """Write or refresh the cache entry after a successful resolution."""
        fingerprint = None
        if self.config.verify_fingerprint:
            try:
                fingerprint = await asyncio.wait_for(
                    self.adapter.get_element_context(element),
                    timeout=self.config.cache_probe_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Fingerprinting {selector!r} timed out, caching it without a fingerprint")
            except Exception as e:
                logger.warning(f"Fingerprinting {selector!r} failed, caching it without a fingerprint: {e}")

        try:
            await asyncio.wait_for(
                self.cache.put(key, CachedSelector(selector=selector, fingerprint=fingerprint, success_count=1)),
                timeout=self.config.cache_probe_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to cache selector {selector!r}: {e}")

    @staticmethod
    def _build_result(
        element: Any,
        selector: str,
        strategy: ResolutionStrategy,
        confidence: float,
        reasoning: str,
        start_time: float,
        from_cache: bool = False
    ) -> LocateResult:
        return LocateResult(
            element=element,
            actual_selector=selector,
            strategy=strategy,
            confidence=confidence,
            reasoning=reasoning,
            execution_time=time.time() - start_time,
            from_cache=from_cache
        )

    # Convenience lookups

    async def find_element(
        self,
        selector: str,
        description: str,
        context: str = "",
        options: Optional[LocateOptions] = None
    ) -> Any:
        result = await self.locate(LocateRequest.create(selector, description, context, options))
        return result.element

    async def find_elements(
        self,
        selector: str,
        description: str,
        context: str = "",
        options: Optional[LocateOptions] = None
    ) -> List[Any]:
        """Return every element matching the selector ``locate`` settled on."""
        result = await self.locate(LocateRequest.create(selector, description, context, options))
        elements = await self.adapter.find_elements(result.actual_selector)
        return list(elements) if elements else [result.element]

    async def is_element_present(
        self,
        selector: str,
        description: str,
        context: str = "",
        options: Optional[LocateOptions] = None
    ) -> bool:
        try:
            await self.locate(LocateRequest.create(selector, description, context, options))
            return True
        except (ElementNotFoundError, LocateTimeoutError):
            return False

    # Cache management

    async def clear_cache(self):
        await self.cache.clear_all()

    async def remove_cached_selector(self, selector: str, description: str, context: str = "") -> bool:
        key = self.key_generator.generate(LocateRequest.create(selector, description, context))
        removed = await self.cache.remove(key)
        if removed:
            logger.info(f"Removed cached selector for {selector!r}")
        return removed

    async def cache_size(self) -> int:
        return await self.cache.size()

    def cache_metrics(self) -> CacheMetrics:
        return self.cache.get_metrics()

    async def cleanup_expired_cache(self) -> int:
        evicted = await self.cache.evict_expired()
        logger.info(f"Cache cleanup removed {evicted} expired entries")
        return evicted

    # Observability

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "locator": self.metrics.to_dict(),
            "cache": self.cache.get_metrics().to_dict(),
            "ai": self.ai_service.metrics.to_dict(),
            "circuit_breaker": self.circuit_breaker.get_stats()
        }

    def get_health_status(self) -> HealthStatus:
        success_rate = self.metrics.success_rate
        state = self.circuit_breaker.state
        return HealthStatus(
            overall=success_rate > HEALTHY_SUCCESS_RATE and not self.circuit_breaker.is_open(),
            success_rate=success_rate,
            cache_hit_rate=self.cache.get_metrics().hit_rate,
            circuit_state=state
        )

    async def shutdown(self):
        """Release the AI service, adapter and cache."""
        await self.ai_service.close()
        await self.adapter.close()
        await self.cache.close()
        logger.info("Healing orchestrator shut down")
