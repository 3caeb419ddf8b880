"""
Tests for the hybrid strategy engine execution policies.
"""

import asyncio
from dataclasses import replace

import pytest

from autoheal.core.exceptions import (
    AdapterError, CircuitBreakerOpenError, ElementNotFoundError, UnsupportedOperationError
)
from autoheal.core.models.healing_models import (
    AIAnalysisResult, ExecutionStrategy, LocateRequest, ResolutionStrategy
)
from autoheal.services.hybrid_strategy_engine import STRATEGY_PLANS, HybridStrategyEngine


DOM_RESULT = AIAnalysisResult(selector="#dom-pick", confidence=0.9, reasoning="matched by id")
VISUAL_RESULT = AIAnalysisResult(selector="#visual-pick", confidence=0.7, reasoning="matched on screenshot")


def build_engine(strategy, fake_ai, fake_adapter, healing_config):
    return HybridStrategyEngine(fake_ai, fake_adapter, replace(healing_config, execution_strategy=strategy))


@pytest.fixture
def request_():
    return LocateRequest.create("#login-btn", "Login button")


class TestStrategyPlans:
    """Test the fallback table."""

    def test_every_sequential_strategy_has_a_plan(self):
        assert set(STRATEGY_PLANS) == set(ExecutionStrategy) - {ExecutionStrategy.PARALLEL}

    def test_smart_sequential_validates_dom_first(self):
        first = STRATEGY_PLANS[ExecutionStrategy.SMART_SEQUENTIAL][0]
        assert first.method == ResolutionStrategy.DOM_ANALYSIS
        assert first.validate is True


class TestDomOnly:

    @pytest.mark.asyncio
    async def test_returns_dom_result_without_validation(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = DOM_RESULT
        engine = build_engine(ExecutionStrategy.DOM_ONLY, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.selector == "#dom-pick"
        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert result.elements is None
        assert fake_adapter.find_calls == []
        assert fake_adapter.snapshot_calls == [False]

    @pytest.mark.asyncio
    async def test_dom_failure_is_element_not_found(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = RuntimeError("bad reply")
        engine = build_engine(ExecutionStrategy.DOM_ONLY, fake_ai, fake_adapter, healing_config)

        with pytest.raises(ElementNotFoundError) as exc_info:
            await engine.heal(request_)

        assert exc_info.value.attempted == ["dom_analysis"]
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert fake_ai.visual_calls == 0


class TestSequential:

    @pytest.mark.asyncio
    async def test_visual_only_on_dom_exception(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = RuntimeError("timeout")
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.VISUAL_ANALYSIS
        assert result.attempted == ["dom_analysis", "visual_analysis"]

    @pytest.mark.asyncio
    async def test_dom_result_not_validated(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = DOM_RESULT
        engine = build_engine(ExecutionStrategy.SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert fake_ai.visual_calls == 0


class TestSmartSequential:

    @pytest.mark.asyncio
    async def test_valid_dom_result_never_calls_visual(
        self, fake_ai, fake_adapter, healing_config, request_, make_element
    ):
        element = make_element(id="dom-pick")
        fake_adapter.page["#dom-pick"] = [element]
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert result.elements == [element]
        assert fake_ai.dom_calls == 1
        assert fake_ai.visual_calls == 0
        assert True not in fake_adapter.snapshot_calls

    @pytest.mark.asyncio
    async def test_dom_result_matching_nothing_falls_back_to_visual(
        self, fake_ai, fake_adapter, healing_config, request_
    ):
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.VISUAL_ANALYSIS
        assert fake_ai.visual_calls == 1

    @pytest.mark.asyncio
    async def test_ambiguous_dom_result_falls_back_to_visual(
        self, fake_ai, fake_adapter, healing_config, request_, make_element
    ):
        fake_adapter.page["#dom-pick"] = [make_element(), make_element()]
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.VISUAL_ANALYSIS

    @pytest.mark.asyncio
    async def test_visual_unavailable_exhausts_chain(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual = False
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        with pytest.raises(ElementNotFoundError) as exc_info:
            await engine.heal(request_)

        assert exc_info.value.attempted == ["dom_analysis", "visual_analysis"]
        assert isinstance(exc_info.value.cause, UnsupportedOperationError)
        assert fake_ai.visual_calls == 0
        assert True not in fake_adapter.snapshot_calls

    @pytest.mark.asyncio
    async def test_breaker_rejection_propagates_immediately(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = CircuitBreakerOpenError("AI unavailable")
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await engine.heal(request_)

        assert exc_info.value.selector == "#login-btn"
        assert exc_info.value.attempted == ["dom_analysis"]
        assert fake_ai.visual_calls == 0

    @pytest.mark.asyncio
    async def test_adapter_error_during_validation_propagates(
        self, fake_ai, fake_adapter, healing_config, request_
    ):
        fake_adapter.failing_selectors.add("#dom-pick")
        fake_ai.dom_reply = DOM_RESULT
        engine = build_engine(ExecutionStrategy.SMART_SEQUENTIAL, fake_ai, fake_adapter, healing_config)

        with pytest.raises(AdapterError):
            await engine.heal(request_)
        assert fake_ai.visual_calls == 0


class TestVisualFirst:

    @pytest.mark.asyncio
    async def test_valid_visual_result_skips_dom(
        self, fake_ai, fake_adapter, healing_config, request_, make_element
    ):
        fake_adapter.page["#visual-pick"] = [make_element()]
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.VISUAL_FIRST, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.VISUAL_ANALYSIS
        assert fake_ai.dom_calls == 0
        assert fake_adapter.snapshot_calls == [True]

    @pytest.mark.asyncio
    async def test_invalid_visual_result_falls_back_to_dom(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.visual_reply = VISUAL_RESULT
        fake_ai.dom_reply = DOM_RESULT
        engine = build_engine(ExecutionStrategy.VISUAL_FIRST, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert result.attempted == ["visual_analysis", "dom_analysis"]
        # the screenshot snapshot is reused for DOM analysis
        assert fake_adapter.snapshot_calls == [True]


class TestParallel:

    @pytest.mark.asyncio
    async def test_prefers_dom_when_both_validate(
        self, fake_ai, fake_adapter, healing_config, request_, make_element
    ):
        fake_adapter.page["#dom-pick"] = [make_element()]
        fake_adapter.page["#visual-pick"] = [make_element()]
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.PARALLEL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert fake_ai.dom_calls == 1
        assert fake_ai.visual_calls == 1

    @pytest.mark.asyncio
    async def test_visual_wins_when_dom_fails(
        self, fake_ai, fake_adapter, healing_config, request_, make_element
    ):
        fake_adapter.page["#visual-pick"] = [make_element()]
        fake_ai.dom_reply = RuntimeError("DOM analysis failed")
        fake_ai.visual_reply = VISUAL_RESULT
        engine = build_engine(ExecutionStrategy.PARALLEL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.VISUAL_ANALYSIS
        assert result.elements is not None

    @pytest.mark.asyncio
    async def test_fails_only_when_both_fail(self, fake_ai, fake_adapter, healing_config, request_):
        fake_ai.dom_reply = DOM_RESULT
        fake_ai.visual_reply = RuntimeError("vision model down")
        engine = build_engine(ExecutionStrategy.PARALLEL, fake_ai, fake_adapter, healing_config)

        with pytest.raises(ElementNotFoundError) as exc_info:
            await engine.heal(request_)

        assert exc_info.value.attempted == ["dom_analysis", "visual_analysis"]

    @pytest.mark.asyncio
    async def test_slow_branch_is_awaited(self, fake_adapter, healing_config, request_, make_element, fake_ai):
        fake_adapter.page["#dom-pick"] = [make_element()]
        finished = []

        async def slow_visual(screenshot, description):
            await asyncio.sleep(0.05)
            finished.append("visual")
            return VISUAL_RESULT

        fake_ai.dom_reply = DOM_RESULT
        fake_ai.analyze_visual = slow_visual
        engine = build_engine(ExecutionStrategy.PARALLEL, fake_ai, fake_adapter, healing_config)

        result = await engine.heal(request_)

        assert result.strategy == ResolutionStrategy.DOM_ANALYSIS
        assert finished == ["visual"]
