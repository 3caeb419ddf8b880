"""Chooses one element when a selector matches several."""

import asyncio
import logging
from typing import Any, List

from ..core.models.healing_models import CandidateSummary
from .ai_service import AIService
from .automation_adapter import AutomationAdapter


logger = logging.getLogger(__name__)


class Disambiguator:
    """Asks the AI service which candidate matches the description.

    Never raises: any AI failure, timeout or out-of-range answer falls back
    to the first candidate in document order.
    """

    def __init__(self, ai_service: AIService, adapter: AutomationAdapter, timeout: float = 5.0):
        self.ai_service = ai_service
        self.adapter = adapter
        self.timeout = timeout

    async def pick(self, candidates: List[Any], description: str) -> Any:
        """
        Pick the candidate best matching ``description``.

        Args:
            candidates: Non-empty list of framework elements
            description: Human description of the wanted element

        Returns:
            One element of ``candidates``
        """
        if not candidates:
            raise ValueError("Cannot disambiguate an empty candidate list")
        if len(candidates) == 1:
            return candidates[0]

        try:
            summaries = await self._summarize(candidates)
            index = await asyncio.wait_for(
                self.ai_service.select_best_matching_element(summaries, description),
                timeout=self.timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Disambiguation failed, using first of {len(candidates)} candidates: {e}")
            return candidates[0]

        if not isinstance(index, int) or isinstance(index, bool):
            logger.warning(f"AI returned non-integer choice {index!r}, using the first candidate")
            return candidates[0]
        if not 0 <= index < len(candidates):
            logger.warning(
                f"AI chose element {index + 1} outside 1-{len(candidates)}, using the first candidate"
            )
            return candidates[0]

        logger.info(f"Disambiguated {len(candidates)} candidates to element {index + 1}")
        return candidates[index]

    async def _summarize(self, candidates: List[Any]) -> List[CandidateSummary]:
        summaries = []
        for index, element in enumerate(candidates):
            fingerprint = await self.adapter.get_element_context(element)
            summaries.append(CandidateSummary(
                index=index,
                tag_name=fingerprint.tag_name,
                text=fingerprint.text_content,
                attributes=dict(fingerprint.attributes)
            ))
        return summaries
