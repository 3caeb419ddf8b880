"""
Pytest configuration and shared fixtures for the test suite.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# Add the package source to Python path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from autoheal.core.exceptions import AdapterError  # noqa: E402
from autoheal.core.models.healing_models import (  # noqa: E402
    AIAnalysisResult, CandidateSummary, ElementFingerprint,
    ExecutionStrategy, HealingConfiguration, PageSnapshot
)
from autoheal.services.ai_service import AIService  # noqa: E402
from autoheal.services.automation_adapter import AutomationAdapter  # noqa: E402


@dataclass(eq=False)
class FakeElement:
    """Stand-in for a framework element handle."""
    tag_name: str
    attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""


class FakeAdapter(AutomationAdapter):
    """In-memory page: each selector maps to the elements it matches."""

    def __init__(self, page: Optional[Dict[str, List[FakeElement]]] = None, screenshots: bool = True):
        self.page = dict(page or {})
        self.screenshots = screenshots
        self.failing_selectors = set()
        self.find_calls: List[str] = []
        self.snapshot_calls: List[bool] = []
        self.closed = False

    async def find_elements(self, selector: str) -> List[FakeElement]:
        self.find_calls.append(selector)
        if selector in self.failing_selectors:
            raise AdapterError("browser crashed", selector=selector)
        return list(self.page.get(selector, []))

    async def get_element_context(self, element: FakeElement) -> ElementFingerprint:
        return ElementFingerprint(
            tag_name=element.tag_name,
            attributes=dict(element.attributes),
            text_content=element.text
        )

    async def get_page_snapshot(self, include_screenshot: bool = False) -> PageSnapshot:
        self.snapshot_calls.append(include_screenshot)
        screenshot = b"\x89PNG fake" if include_screenshot and self.screenshots else None
        return PageSnapshot(html="<form><button>Sign in</button></form>", url="http://test/login",
                            title="Login", screenshot=screenshot)

    async def close(self) -> None:
        self.closed = True


Reply = Union[AIAnalysisResult, Exception]


class FakeAIService(AIService):
    """Scriptable AI service that counts its calls."""

    def __init__(
        self,
        dom_reply: Optional[Reply] = None,
        visual_reply: Optional[Reply] = None,
        select_reply: Union[int, Exception] = 0,
        visual: bool = True
    ):
        self.dom_reply = dom_reply if dom_reply is not None else RuntimeError("no DOM reply scripted")
        self.visual_reply = visual_reply if visual_reply is not None else RuntimeError("no visual reply scripted")
        self.select_reply = select_reply
        self.visual = visual
        self.dom_calls = 0
        self.visual_calls = 0
        self.select_calls = 0
        self.last_candidates: List[CandidateSummary] = []
        self.closed = False

    @property
    def supports_visual_analysis(self) -> bool:
        return self.visual

    @property
    def total_calls(self) -> int:
        return self.dom_calls + self.visual_calls + self.select_calls

    async def analyze_dom(self, snapshot, description, previous_selector=None) -> AIAnalysisResult:
        self.dom_calls += 1
        if isinstance(self.dom_reply, Exception):
            raise self.dom_reply
        return self.dom_reply

    async def analyze_visual(self, screenshot, description) -> AIAnalysisResult:
        self.visual_calls += 1
        if isinstance(self.visual_reply, Exception):
            raise self.visual_reply
        return self.visual_reply

    async def select_best_matching_element(self, candidates, description) -> int:
        self.select_calls += 1
        self.last_candidates = list(candidates)
        if isinstance(self.select_reply, Exception):
            raise self.select_reply
        return self.select_reply

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_element():
    """Factory for fake elements."""
    def _make(tag_name: str = "button", text: str = "", **attributes) -> FakeElement:
        return FakeElement(tag_name=tag_name, attributes=attributes, text=text)
    return _make


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def fake_ai():
    return FakeAIService()


@pytest.fixture
def healing_config():
    """Configuration with fast, single-attempt AI calls."""
    return HealingConfiguration(
        execution_strategy=ExecutionStrategy.SMART_SEQUENTIAL,
        ai_max_retries=1,
        ai_retry_backoff=0.0,
        ai_timeout=2.0,
        cache_probe_timeout=1.0,
        validation_timeout=1.0,
        disambiguation_timeout=1.0,
        locate_timeout=5.0
    )


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
