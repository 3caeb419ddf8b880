"""
Tests for the resilient AI service wrapper.
"""

import asyncio
from dataclasses import replace

import pytest

from autoheal.core.exceptions import AIServiceError, CircuitBreakerOpenError, UnsupportedOperationError
from autoheal.core.models.healing_models import AIAnalysisResult, CircuitState, PageSnapshot
from autoheal.services.ai_service import ResilientAIService
from autoheal.services.circuit_breaker import CircuitBreaker


RESULT = AIAnalysisResult(selector="#submit", confidence=0.8)
SNAPSHOT = PageSnapshot(html="<button id='submit'>Go</button>")


class FlakyDelegate:
    """Fails a fixed number of times before succeeding."""

    supports_visual_analysis = True

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.closed = False

    async def analyze_dom(self, snapshot, description, previous_selector=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("provider unreachable")
        return RESULT

    async def analyze_visual(self, screenshot, description):
        return await self.analyze_dom(None, description)

    async def select_best_matching_element(self, candidates, description):
        return 2

    async def close(self):
        self.closed = True


@pytest.fixture
def breaker():
    return CircuitBreaker(failure_threshold=2, open_timeout=60.0)


class TestResilientAIService:
    """Test retries, breaker accounting and capability checks."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, breaker, healing_config):
        service = ResilientAIService(FlakyDelegate(failures=0), breaker, healing_config)

        assert await service.analyze_dom(SNAPSHOT, "Submit") == RESULT
        assert await service.select_best_matching_element([], "Submit") == 2
        assert service.metrics.total_requests == 2
        assert service.metrics.success_rate == 1.0

    @pytest.mark.asyncio
    async def test_retries_until_success(self, breaker, healing_config):
        delegate = FlakyDelegate(failures=2)
        config = replace(healing_config, ai_max_retries=3, ai_retry_backoff=0.0)
        service = ResilientAIService(delegate, breaker, config)

        assert await service.analyze_dom(SNAPSHOT, "Submit") == RESULT
        assert delegate.calls == 3
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_and_count_one_failure(self, breaker, healing_config):
        delegate = FlakyDelegate(failures=10)
        config = replace(healing_config, ai_max_retries=2, ai_retry_backoff=0.0)
        service = ResilientAIService(delegate, breaker, config)

        with pytest.raises(AIServiceError) as exc_info:
            await service.analyze_dom(SNAPSHOT, "Submit")

        assert delegate.calls == 2
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert breaker.get_stats()["consecutive_failures"] == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_and_rejects(self, breaker, healing_config):
        delegate = FlakyDelegate(failures=10)
        service = ResilientAIService(delegate, breaker, healing_config)

        for _ in range(2):
            with pytest.raises(AIServiceError):
                await service.analyze_dom(SNAPSHOT, "Submit")

        calls_before = delegate.calls
        with pytest.raises(CircuitBreakerOpenError):
            await service.analyze_dom(SNAPSHOT, "Submit")

        assert delegate.calls == calls_before
        assert service.metrics.to_dict()["circuit_open_rejections"] == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, breaker, healing_config):
        class HangingDelegate(FlakyDelegate):
            async def analyze_dom(self, snapshot, description, previous_selector=None):
                await asyncio.sleep(5)

        config = replace(healing_config, ai_timeout=0.05)
        service = ResilientAIService(HangingDelegate(failures=0), breaker, config)

        with pytest.raises(AIServiceError) as exc_info:
            await service.analyze_dom(SNAPSHOT, "Submit")

        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_visual_disabled_by_configuration(self, breaker, healing_config):
        config = replace(healing_config, visual_analysis_enabled=False)
        service = ResilientAIService(FlakyDelegate(failures=0), breaker, config)

        assert service.supports_visual_analysis is False
        with pytest.raises(UnsupportedOperationError):
            await service.analyze_visual(b"png", "Submit")

    @pytest.mark.asyncio
    async def test_visual_unsupported_by_provider(self, breaker, healing_config):
        delegate = FlakyDelegate(failures=0)
        delegate.supports_visual_analysis = False
        service = ResilientAIService(delegate, breaker, healing_config)

        with pytest.raises(UnsupportedOperationError):
            await service.analyze_visual(b"png", "Submit")
        assert delegate.calls == 0

    @pytest.mark.asyncio
    async def test_unsupported_operation_releases_probe(self, healing_config):
        clock = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, open_timeout=1.0, clock=lambda: clock[0])
        breaker.record_failure()
        clock[0] = 5.0

        class NoVision(FlakyDelegate):
            async def analyze_visual(self, screenshot, description):
                raise UnsupportedOperationError("no images")

        service = ResilientAIService(NoVision(failures=0), breaker, healing_config)

        with pytest.raises(UnsupportedOperationError):
            await service.analyze_visual(b"png", "Submit")

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_execute() is True

    @pytest.mark.asyncio
    async def test_close_closes_delegate(self, breaker, healing_config):
        delegate = FlakyDelegate(failures=0)
        await ResilientAIService(delegate, breaker, healing_config).close()
        assert delegate.closed
