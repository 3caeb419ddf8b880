"""
LiteLLM-backed AI service.

Builds the DOM, visual and disambiguation prompts and turns model replies
into locators or candidate indices. Resilience is applied by
``ResilientAIService``; this class performs single attempts.
"""

import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional

import litellm

from ..core.exceptions import AIServiceError, UnsupportedOperationError
from ..core.locator_utils import detect_locator_kind
from ..core.models.healing_models import (
    AIAnalysisResult, CandidateSummary, LocatorKind, PageSnapshot
)
from .ai_service import AIService
from .html_optimizer import optimize_html


logger = logging.getLogger(__name__)


SELECTOR_TYPE_PREFIXES = {
    "id": "id=",
    "name": "name=",
    "css": "css=",
    "xpath": "xpath=",
    "class_name": "class=",
    "tag_name": "tag=",
    "link_text": "link=",
    "partial_link_text": "partial link=",
    "role": "role=",
    "text": "text=",
}


DOM_ANALYSIS_PROMPT = """You are an expert in web test automation. A locator stopped matching after the page changed.

Find the element that best matches this description: "{description}"
{previous_hint}
Page HTML:
{html}

Prefer stable locators: id, name, data-testid, aria-label, then short CSS selectors. Avoid positional XPath.
The locator must match exactly one element on the page.

Respond with ONLY a JSON object:
{{
  "selector": "the locator",
  "selector_type": "css|xpath|id|name|link_text|text",
  "confidence": 0.0-1.0,
  "reasoning": "one sentence",
  "alternatives": ["other locators that also identify the element"]
}}"""


VISUAL_ANALYSIS_PROMPT = """You are an expert in web test automation. Look at the screenshot and find the element that best matches this description: "{description}"

Propose a locator (CSS selector, XPath, or visible text) that identifies exactly that element.

Respond with ONLY a JSON object:
{{
  "selector": "the locator",
  "selector_type": "css|xpath|text",
  "confidence": 0.0-1.0,
  "reasoning": "one sentence"
}}"""


DISAMBIGUATION_PROMPT = """Several elements on the page match a locator. Pick the one that best matches this description: "{description}"

{candidates}

Respond with ONLY the element number (1-{count})."""


class LiteLLMAIService(AIService):
    """AI service talking to any model LiteLLM can route to.

    Args:
        model: LiteLLM model name, e.g. ``gemini/gemini-2.5-flash``
        api_key: Provider API key, None to use the provider's env variable
        api_base: Optional custom endpoint
        max_html_chars: Optimized HTML beyond this length is truncated
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 1000,
        max_html_chars: int = 120000
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_html_chars = max_html_chars

    @property
    def supports_visual_analysis(self) -> bool:
        try:
            return bool(litellm.supports_vision(model=self.model))
        except Exception as e:
            logger.debug(f"Could not determine vision support for {self.model}: {e}")
            return False

    async def analyze_dom(
        self,
        snapshot: PageSnapshot,
        description: str,
        previous_selector: Optional[str] = None
    ) -> AIAnalysisResult:
        html = optimize_html(snapshot.html)
        if len(html) > self.max_html_chars:
            logger.debug(f"Truncating optimized HTML from {len(html)} to {self.max_html_chars} chars")
            html = html[:self.max_html_chars]

        previous_hint = ""
        if previous_selector:
            previous_hint = f'The previous locator was "{previous_selector}" and no longer matches.\n'

        prompt = DOM_ANALYSIS_PROMPT.format(
            description=description,
            previous_hint=previous_hint,
            html=html
        )
        response = await self._complete([{"role": "user", "content": prompt}])
        return self._parse_analysis(response)

    async def analyze_visual(self, screenshot: bytes, description: str) -> AIAnalysisResult:
        if not self.supports_visual_analysis:
            raise UnsupportedOperationError(f"Model {self.model} does not support image input")

        image_data = base64.b64encode(screenshot).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": VISUAL_ANALYSIS_PROMPT.format(description=description)},
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image_data}"}}
            ]
        }]
        response = await self._complete(messages)
        return self._parse_analysis(response)

    async def select_best_matching_element(
        self,
        candidates: List[CandidateSummary],
        description: str
    ) -> int:
        prompt = DISAMBIGUATION_PROMPT.format(
            description=description,
            candidates="\n\n".join(candidate.describe() for candidate in candidates),
            count=len(candidates)
        )
        response = await self._complete([{"role": "user", "content": prompt}])
        return self._parse_element_number(self._content(response))

    async def _complete(self, messages: List[Dict[str, Any]]):
        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return await litellm.acompletion(**kwargs)

    @staticmethod
    def _content(response) -> str:
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise AIServiceError("Malformed completion response", cause=e)

    @staticmethod
    def _tokens_used(response) -> int:
        usage = getattr(response, "usage", None)
        return int(getattr(usage, "total_tokens", 0) or 0) if usage else 0

    def _parse_analysis(self, response) -> AIAnalysisResult:
        content = self._content(response)
        data = parse_json_reply(content)

        selector = str(data.get("selector") or "").strip()
        if not selector:
            raise AIServiceError(f"AI reply contained no selector: {content[:200]}")

        selector = apply_selector_type(selector, data.get("selector_type"))
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return AIAnalysisResult(
            selector=selector,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(data.get("reasoning") or ""),
            alternatives=[str(alt) for alt in data.get("alternatives") or []],
            tokens_used=self._tokens_used(response)
        )

    @staticmethod
    def _parse_element_number(content: str) -> int:
        match = re.search(r"\d+", content)
        if not match:
            raise AIServiceError(f"AI reply contained no element number: {content[:200]}")
        return int(match.group(0)) - 1


def parse_json_reply(content: str) -> Dict[str, Any]:
    """Parse a JSON object out of a model reply, tolerating markdown fences."""
    cleaned = re.sub(r'```(?:json)?\s*', '', content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        json_match = re.search(r'\{.*\}', cleaned, re.DOTALL)
        if not json_match:
            raise AIServiceError(f"AI reply is not JSON: {content[:200]}")
        try:
            data = json.loads(json_match.group(0))
        except json.JSONDecodeError as e:
            raise AIServiceError(f"AI reply is not JSON: {content[:200]}", cause=e)

    if not isinstance(data, dict):
        raise AIServiceError(f"AI reply is not a JSON object: {content[:200]}")
    return data


def apply_selector_type(selector: str, selector_type: Optional[str]) -> str:
    """Prefix the selector when its declared type differs from what detection infers."""
    if not selector_type:
        return selector
    type_key = selector_type.strip().lower().replace(" ", "_")
    prefix = SELECTOR_TYPE_PREFIXES.get(type_key)
    if prefix is None:
        return selector
    try:
        declared = LocatorKind(type_key)
    except ValueError:
        return selector
    if detect_locator_kind(selector) == declared:
        return selector
    return f"{prefix}{selector}"
