"""Contract between the locator engine and a browser automation framework."""

from abc import ABC, abstractmethod
from typing import Any, List

from ..core.models.healing_models import ElementFingerprint, PageSnapshot


class AutomationAdapter(ABC):
    """Browser-side operations the engine needs.

    Implementations return an empty list when a selector matches nothing or
    is syntactically invalid for the framework, and raise ``AdapterError``
    when the framework itself fails.
    """

    @abstractmethod
    async def find_elements(self, selector: str) -> List[Any]:
        """Return every element currently matching ``selector``."""

    @abstractmethod
    async def get_element_context(self, element: Any) -> ElementFingerprint:
        """Describe ``element`` for fingerprinting and disambiguation."""

    @abstractmethod
    async def get_page_snapshot(self, include_screenshot: bool = False) -> PageSnapshot:
        """Capture the page HTML and, when requested, a PNG screenshot."""

    async def close(self) -> None:
        pass
