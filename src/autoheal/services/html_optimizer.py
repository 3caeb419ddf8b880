"""Shrinks page HTML before it is sent to a language model."""

import logging

from bs4 import BeautifulSoup, Comment, Tag


logger = logging.getLogger(__name__)


REMOVE_TAGS = ("script", "style", "meta", "link", "svg", "canvas", "noscript")

KEEP_ATTRIBUTES = frozenset({
    "id", "name", "type", "placeholder", "value", "class",
    "data-qa-marker", "data-testid",
    "role", "aria-label", "aria-labelledby",
    "href", "for",
})

# Void elements carry meaning without children or text
VOID_TAGS = frozenset({"input", "img", "br", "hr", "area", "source", "track", "wbr", "col"})


def optimize_html(html: str) -> str:
    """
    Strip markup that does not help locate elements.

    Removes non-content tags and comments, drops attributes outside
    ``KEEP_ATTRIBUTES`` and prunes empty attribute-less leaves.

    Args:
        html: Raw page source

    Returns:
        Inner HTML of the body (or the whole document when there is no body)
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, 'html.parser')

    for tag in soup.find_all(list(REMOVE_TAGS)):
        tag.extract()

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup.find_all(True):
        element.attrs = {k: v for k, v in element.attrs.items() if k in KEEP_ATTRIBUTES}

    _prune_empty(soup)

    root = soup.body if soup.body is not None else soup
    optimized = root.decode_contents().strip()
    logger.debug(f"Optimized HTML from {len(html)} to {len(optimized)} chars")
    return optimized


def _prune_empty(soup: BeautifulSoup):
    # Deepest elements first so parents emptied by the pass are pruned too
    for element in reversed(soup.find_all(True)):
        if not isinstance(element, Tag) or element.name in ("html", "body", "head"):
            continue
        if element.name in VOID_TAGS:
            continue
        if element.attrs or element.find(True) is not None:
            continue
        if element.get_text(strip=True):
            continue
        element.decompose()
