"""
Tests for locator engine data models.
"""

from datetime import datetime

import pytest

from autoheal.core.exceptions import AutoHealError, ElementNotFoundError
from autoheal.core.models.healing_models import (
    CachedSelector, CacheMetrics, CandidateSummary, CircuitState, ElementFingerprint,
    ExecutionStrategy, HealingConfiguration, HealthStatus, LocateRequest,
    LocateResult, LocatorKind, Position, ResolutionStrategy
)


class TestCachedSelector:
    """Test cached selector bookkeeping."""

    def test_fresh_entry_rate(self):
        assert CachedSelector(selector="#a").current_success_rate == 1.0

    @pytest.mark.parametrize("success,failure,trusted", [
        (2, 1, False),
        (7, 3, False),
        (8, 2, True),
        (1, 0, True),
    ])
    def test_trust_threshold_is_exclusive(self, success, failure, trusted):
        entry = CachedSelector(selector="#a", success_count=success, failure_count=failure)
        assert entry.is_trusted(0.7) is trusted

    def test_copy_is_independent(self):
        entry = CachedSelector(selector="#a", success_count=1)
        clone = entry.copy()
        clone.success_count = 5

        assert entry.success_count == 1

    def test_dict_round_trip_keeps_fingerprint(self):
        created = datetime(2024, 1, 2, 3, 4, 5)
        entry = CachedSelector(
            selector=".btn",
            fingerprint=ElementFingerprint(
                tag_name="button", attributes={"id": "go"}, position=Position(1, 2, 3, 4)
            ),
            success_count=3,
            failure_count=1,
            created_at=created,
            last_used_at=created
        )

        restored = CachedSelector.from_dict(entry.to_dict())

        assert restored == entry
        assert restored.fingerprint.position.height == 4


class TestElementFingerprint:
    """Test element identity comparison."""

    def test_same_element_with_drifted_text(self):
        stored = ElementFingerprint(tag_name="BUTTON", attributes={"id": "go"}, text_content="Go")
        live = ElementFingerprint(tag_name="button", attributes={"id": "go", "class": "new"}, text_content="Go now")

        assert stored.is_same_element(live)

    def test_different_stable_attribute(self):
        stored = ElementFingerprint(tag_name="button", attributes={"data-testid": "login"})
        live = ElementFingerprint(tag_name="button", attributes={"data-testid": "logout"})

        assert not stored.is_same_element(live)

    def test_different_tag(self):
        assert not ElementFingerprint(tag_name="a").is_same_element(ElementFingerprint(tag_name="button"))


class TestRequestAndResult:
    """Test request construction and result reporting."""

    def test_create_detects_kind(self):
        request = LocateRequest.create("//button", "Submit", None)

        assert request.locator_kind == LocatorKind.XPATH
        assert request.context == ""
        assert request.options.enable_caching is True

    def test_result_to_dict(self):
        result = LocateResult(
            element=object(), actual_selector=".btn", strategy=ResolutionStrategy.CACHED,
            confidence=0.9, reasoning="cached", execution_time=0.01, from_cache=True
        )

        data = result.to_dict()
        assert data["strategy"] == "cached"
        assert data["from_cache"] is True
        assert "element" not in data

    def test_candidate_prompt_block_is_one_based(self):
        block = CandidateSummary(index=0, tag_name="a", attributes={"id": "x"}).describe()

        assert block.startswith("Element 1:")
        assert "Text: No visible text" in block
        assert "id: x" in block


class TestObservabilityModels:

    def test_cache_hit_rate(self):
        assert CacheMetrics().hit_rate == 0.0
        assert CacheMetrics(hits=3, misses=1).to_dict()["hit_rate"] == 0.75

    def test_health_status_to_dict(self):
        status = HealthStatus(overall=True, success_rate=0.9, cache_hit_rate=0.5, circuit_state=CircuitState.HALF_OPEN)
        assert status.to_dict()["circuit_state"] == "half_open"


class TestHealingConfiguration:

    def test_dict_round_trip(self):
        config = HealingConfiguration(execution_strategy=ExecutionStrategy.PARALLEL, ai_max_retries=5)

        assert HealingConfiguration.from_dict(config.to_dict()) == config


class TestErrors:

    def test_message_carries_context(self):
        error = ElementNotFoundError(
            "All healing strategies failed",
            selector="#login-btn",
            description="Login button",
            attempted=["original", "cached", "dom_analysis"],
            cause=RuntimeError("quota exceeded")
        )

        text = str(error)
        assert "selector='#login-btn'" in text
        assert "attempted=original -> cached -> dom_analysis" in text
        assert "cause=RuntimeError: quota exceeded" in text
        assert error.to_dict()["type"] == "ElementNotFoundError"

    def test_with_context_only_fills_gaps(self):
        error = AutoHealError("boom", selector="#given")
        error.with_context("#other", "desc", ["original"])

        assert error.selector == "#given"
        assert error.description == "desc"
        assert error.attempted == ["original"]
