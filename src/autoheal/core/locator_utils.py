"""Locator parsing helpers and cache key generation."""

import re
import zlib
from typing import Callable, Optional, Tuple

from .models.healing_models import LocatorKind, LocateRequest


# Explicit "strategy=value" prefixes, longest first so "partial link=" wins over "link="
LOCATOR_PREFIXES = (
    ("partial link=", LocatorKind.PARTIAL_LINK_TEXT),
    ("xpath=", LocatorKind.XPATH),
    ("class=", LocatorKind.CLASS_NAME),
    ("link=", LocatorKind.LINK_TEXT),
    ("name=", LocatorKind.NAME),
    ("text=", LocatorKind.TEXT),
    ("role=", LocatorKind.ROLE),
    ("css=", LocatorKind.CSS),
    ("tag=", LocatorKind.TAG_NAME),
    ("id=", LocatorKind.ID),
)

XPATH_PREFIXES = ("//", "./", "(/", "/")
BARE_IDENTIFIER = re.compile(r"[\w-]+")
WHITESPACE = re.compile(r"\s+")


def split_locator(selector: str) -> Tuple[LocatorKind, str]:
    """Split a raw selector into its kind and the expression to evaluate.

    Args:
        selector: Raw selector such as ``id=login``, ``//button`` or ``#login-btn``

    Returns:
        Tuple of detected kind and the selector value without any prefix
    """
    value = (selector or "").strip()
    lowered = value.lower()

    for prefix, kind in LOCATOR_PREFIXES:
        if lowered.startswith(prefix):
            return kind, value[len(prefix):].strip()

    if value.startswith("getByRole("):
        return LocatorKind.ROLE, value
    if value.startswith("getByText("):
        return LocatorKind.TEXT, value
    if value.startswith(XPATH_PREFIXES):
        return LocatorKind.XPATH, value
    if BARE_IDENTIFIER.fullmatch(value):
        return LocatorKind.ID, value
    return LocatorKind.CSS, value


def detect_locator_kind(selector: str) -> LocatorKind:
    """Detect the locator kind of a raw selector string."""
    return split_locator(selector)[0]


def normalize_selector(selector: str) -> str:
    """Trim and collapse internal whitespace."""
    return WHITESPACE.sub(" ", (selector or "").strip())


def hash_description(description: str) -> str:
    """Short, process-independent hash of a free-text description."""
    return format(zlib.crc32((description or "").strip().encode("utf-8")), "08x")


class CacheKeyGenerator:
    """Builds deterministic cache keys for locate requests.

    Keys have the shape ``version|kind|normalized selector|context|desc hash``.
    Bumping ``version`` orphans every key produced under the previous one.
    An optional ``enrich`` callable appends backend-specific components.
    """

    def __init__(
        self,
        version: str = "v1",
        enrich: Optional[Callable[[LocateRequest], str]] = None
    ):
        self.version = version
        self.enrich = enrich

    def generate(self, request: LocateRequest) -> str:
        parts = [
            self.version,
            request.locator_kind.value,
            normalize_selector(request.original_selector),
            request.context or "",
            hash_description(request.description)
        ]
        if self.enrich is not None:
            parts.append(self.enrich(request))
        return "|".join(parts)
