"""Read episode fields from a rendered Poetry Foundation page snapshot.

The browser renders the page and hands over its HTML; everything here is
plain BeautifulSoup work so it can be exercised without a browser.

Every read is best-effort: a missing element, an empty element or a
selector the parser rejects all come back as ``None`` instead of raising.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ..config import LOG_LEVEL

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)


# ── Utility Functions ────────────────────────────────────────────────────────


def _clean_text(text: str | None) -> Optional[str]:
    """Collapse whitespace; empty text becomes None."""
    if not text:
        return None
    cleaned = re.sub(r"\s+", " ", text).strip()
    return cleaned or None


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _select(soup: BeautifulSoup, selector: str | None) -> Optional[Tag]:
    if not selector:
        return None
    try:
        return soup.select_one(selector)
    except Exception as e:
        logger.debug(f"Selector rejected ({e}): {selector[:80]}")
        return None


# ── Field Readers ────────────────────────────────────────────────────────────


def read_text(soup: BeautifulSoup, selector: str | None) -> Optional[str]:
    """Return the trimmed text of the first element matching ``selector``."""
    element = _select(soup, selector)
    if element is None:
        return None
    return _clean_text(element.get_text())


def read_audio_src(
    soup: BeautifulSoup, selector: str | None, base_url: str = ""
) -> Optional[str]:
    """Return the absolute audio URL of the matched ``<audio>`` element.

    Falls back to the first ``<source src>`` child when the element has no
    ``src`` of its own.
    """
    element = _select(soup, selector)
    if element is None:
        return None

    src = element.get("src")
    if not src:
        source = element.find("source", src=True)
        src = source.get("src") if source else None
    if not src or not str(src).strip():
        return None

    return urljoin(base_url, str(src).strip()) if base_url else str(src).strip()
