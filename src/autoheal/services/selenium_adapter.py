"""
Selenium WebDriver adapter.

WebDriver calls block, so they run on a dedicated thread pool and are
awaited from the event loop.
"""

import asyncio
import hashlib
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Tuple

from selenium.common.exceptions import (
    InvalidSelectorException,
    NoSuchElementException,
    WebDriverException
)
from selenium.webdriver.common.by import By

from ..core.exceptions import AdapterError
from ..core.locator_utils import split_locator
from ..core.models.healing_models import (
    ElementFingerprint, HealingConfiguration, LocatorKind, PageSnapshot, Position
)
from .automation_adapter import AutomationAdapter
from .html_optimizer import optimize_html


logger = logging.getLogger(__name__)


FINGERPRINT_ATTRIBUTES = (
    "id", "class", "name", "type", "value", "href", "src",
    "data-qa-marker", "data-testid", "aria-label", "placeholder", "role"
)

MAX_SIBLINGS = 5

_BY_KIND = {
    LocatorKind.ID: By.ID,
    LocatorKind.NAME: By.NAME,
    LocatorKind.CSS: By.CSS_SELECTOR,
    LocatorKind.XPATH: By.XPATH,
    LocatorKind.CLASS_NAME: By.CLASS_NAME,
    LocatorKind.TAG_NAME: By.TAG_NAME,
    LocatorKind.LINK_TEXT: By.LINK_TEXT,
    LocatorKind.PARTIAL_LINK_TEXT: By.PARTIAL_LINK_TEXT,
}

_QUOTED_ARGUMENT = re.compile(r"""\(\s*['"](.*?)['"]""")


def _xpath_literal(value: str) -> str:
    """Quote a string for use inside an XPath expression."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{part}'" for part in parts) + ")"


def _unwrap_call(value: str) -> str:
    # getByRole("button") / getByText('Sign in')
    match = _QUOTED_ARGUMENT.search(value)
    return match.group(1) if match else value


def to_selenium_by(selector: str) -> Tuple[str, str]:
    """
    Translate a raw selector into a Selenium ``(By, value)`` pair.

    Args:
        selector: Raw selector in any supported notation

    Returns:
        Tuple usable with ``driver.find_elements``
    """
    kind, value = split_locator(selector)

    if kind in _BY_KIND:
        return _BY_KIND[kind], value

    if kind == LocatorKind.TEXT:
        text = _unwrap_call(value) if value.startswith("getByText(") else value
        literal = _xpath_literal(text)
        return By.XPATH, f"//*[normalize-space(text())={literal}]"

    # LocatorKind.ROLE
    role = _unwrap_call(value) if value.startswith("getByRole(") else value
    return By.CSS_SELECTOR, f'[role="{role}"]'


class SeleniumAutomationAdapter(AutomationAdapter):
    """Adapter over a Selenium ``WebDriver``.

    Args:
        driver: WebDriver instance owned by the caller
        max_workers: Size of the thread pool running WebDriver calls
        optimize_html: Strip the page source before returning snapshots
    """

    def __init__(self, driver, max_workers: int = 4, optimize_html: bool = True):
        self.driver = driver
        self.optimize_html = optimize_html
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="autoheal-selenium")
        logger.info(f"Selenium adapter initialized with {max_workers} workers")

    @classmethod
    def from_config(cls, driver, config: HealingConfiguration, optimize_html: bool = True) -> 'SeleniumAutomationAdapter':
        """Build an adapter whose thread pool is sized by ``config.thread_pool_size``."""
        return cls(driver, max_workers=config.thread_pool_size, optimize_html=optimize_html)

    async def _run(self, func, *args):
        return await asyncio.get_event_loop().run_in_executor(self.executor, func, *args)

    async def find_elements(self, selector: str) -> List[Any]:
        return await self._run(self._find_elements_sync, selector)

    async def get_element_context(self, element: Any) -> ElementFingerprint:
        return await self._run(self._element_context_sync, element)

    async def get_page_snapshot(self, include_screenshot: bool = False) -> PageSnapshot:
        return await self._run(self._page_snapshot_sync, include_screenshot)

    async def close(self) -> None:
        self.executor.shutdown(wait=False)
        logger.info("Selenium adapter shut down")

    def _find_elements_sync(self, selector: str) -> List[Any]:
        by_method, value = to_selenium_by(selector)
        try:
            elements = self.driver.find_elements(by_method, value)
        except InvalidSelectorException as e:
            logger.debug(f"Invalid selector {selector!r}: {e.msg}")
            return []
        except WebDriverException as e:
            raise AdapterError(f"Failed to find elements: {e.msg}", selector=selector, cause=e)
        logger.debug(f"Found {len(elements)} elements for selector: {selector}")
        return list(elements)

    def _element_context_sync(self, element) -> ElementFingerprint:
        try:
            tag_name = element.tag_name
            text = (element.text or "").strip()
            attributes = self._extract_attributes(element)
            position = self._extract_position(element)
            parent_container = self._extract_parent_container(element)
            siblings = self._extract_sibling_tags(element)
        except WebDriverException as e:
            raise AdapterError(f"Failed to extract element context: {e.msg}", cause=e)

        return ElementFingerprint(
            tag_name=tag_name,
            attributes=attributes,
            text_content=text,
            position=position,
            parent_container=parent_container,
            sibling_tags=siblings,
            visual_hash=self._visual_hash(tag_name, text, position)
        )

    def _page_snapshot_sync(self, include_screenshot: bool) -> PageSnapshot:
        try:
            html = self.driver.page_source or ""
            url = self.driver.current_url or ""
            title = self.driver.title or ""
            screenshot = self.driver.get_screenshot_as_png() if include_screenshot else None
        except WebDriverException as e:
            raise AdapterError(f"Failed to capture page snapshot: {e.msg}", cause=e)

        if self.optimize_html:
            html = optimize_html(html)
        logger.debug(f"Captured page snapshot of {url} ({len(html)} chars)")
        return PageSnapshot(html=html, url=url, title=title, screenshot=screenshot)

    @staticmethod
    def _extract_attributes(element) -> Dict[str, str]:
        attributes = {}
        for attr in FINGERPRINT_ATTRIBUTES:
            value = element.get_attribute(attr)
            if value:
                attributes[attr] = value
        return attributes

    @staticmethod
    def _extract_position(element) -> Position:
        rect = element.rect or {}
        return Position(
            x=int(rect.get("x", 0)),
            y=int(rect.get("y", 0)),
            width=int(rect.get("width", 0)),
            height=int(rect.get("height", 0))
        )

    @staticmethod
    def _extract_parent_container(element) -> str:
        try:
            parent = element.find_element(By.XPATH, "..")
        except NoSuchElementException:
            return ""
        description = parent.tag_name
        css_class = parent.get_attribute("class")
        if css_class:
            description += "." + css_class.split()[0]
        parent_id = parent.get_attribute("id")
        if parent_id:
            description += "#" + parent_id
        return description

    @staticmethod
    def _extract_sibling_tags(element) -> List[str]:
        siblings = element.find_elements(By.XPATH, "../*")
        return [sibling.tag_name for sibling in siblings[:MAX_SIBLINGS]]

    @staticmethod
    def _visual_hash(tag_name: str, text: str, position: Position) -> str:
        raw = f"{tag_name}|{text}|{position.x},{position.y},{position.width},{position.height}"
        return hashlib.md5(raw.encode("utf-8")).hexdigest()
