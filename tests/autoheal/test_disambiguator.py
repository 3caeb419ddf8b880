"""
Tests for candidate disambiguation.
"""

import asyncio

import pytest

from autoheal.core.exceptions import CircuitBreakerOpenError
from autoheal.services.disambiguator import Disambiguator


class SlowAIService:
    """AI service whose selection never returns in time."""

    async def select_best_matching_element(self, candidates, description):
        await asyncio.sleep(10)
        return 1


class TestDisambiguator:
    """Test Disambiguator.pick."""

    @pytest.mark.asyncio
    async def test_single_candidate_skips_ai(self, fake_ai, fake_adapter, make_element):
        element = make_element(text="Login")
        disambiguator = Disambiguator(fake_ai, fake_adapter)

        assert await disambiguator.pick([element], "Login button") is element
        assert fake_ai.select_calls == 0

    @pytest.mark.asyncio
    async def test_ai_choice_is_used(self, fake_ai, fake_adapter, make_element):
        candidates = [make_element(text="Cancel"), make_element(text="Login", id="login"), make_element(text="Help")]
        fake_ai.select_reply = 1

        chosen = await Disambiguator(fake_ai, fake_adapter).pick(candidates, "Login button")

        assert chosen is candidates[1]
        summaries = fake_ai.last_candidates
        assert [s.index for s in summaries] == [0, 1, 2]
        assert summaries[1].attributes["id"] == "login"
        assert summaries[1].text == "Login"

    @pytest.mark.asyncio
    async def test_ai_failure_falls_back_to_first(self, fake_ai, fake_adapter, make_element):
        candidates = [make_element(text="A"), make_element(text="B"), make_element(text="C")]
        fake_ai.select_reply = RuntimeError("model unavailable")

        chosen = await Disambiguator(fake_ai, fake_adapter).pick(candidates, "Second button")

        assert chosen is candidates[0]
        assert fake_ai.select_calls == 1

    @pytest.mark.asyncio
    async def test_breaker_rejection_falls_back_to_first(self, fake_ai, fake_adapter, make_element):
        candidates = [make_element(text="A"), make_element(text="B")]
        fake_ai.select_reply = CircuitBreakerOpenError("open")

        assert await Disambiguator(fake_ai, fake_adapter).pick(candidates, "B") is candidates[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 3, 42])
    async def test_out_of_range_index_falls_back_to_first(self, fake_ai, fake_adapter, make_element, index):
        candidates = [make_element(text="A"), make_element(text="B"), make_element(text="C")]
        fake_ai.select_reply = index

        assert await Disambiguator(fake_ai, fake_adapter).pick(candidates, "button") is candidates[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [None, "2", 1.0, True])
    async def test_non_integer_choice_falls_back_to_first(self, fake_ai, fake_adapter, make_element, reply):
        candidates = [make_element(text="A"), make_element(text="B"), make_element(text="C")]
        fake_ai.select_reply = reply

        assert await Disambiguator(fake_ai, fake_adapter).pick(candidates, "button") is candidates[0]

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_first(self, fake_adapter, make_element):
        candidates = [make_element(text="A"), make_element(text="B")]
        disambiguator = Disambiguator(SlowAIService(), fake_adapter, timeout=0.05)

        assert await disambiguator.pick(candidates, "B") is candidates[0]

    @pytest.mark.asyncio
    async def test_empty_candidates_rejected(self, fake_ai, fake_adapter):
        with pytest.raises(ValueError):
            await Disambiguator(fake_ai, fake_adapter).pick([], "anything")
