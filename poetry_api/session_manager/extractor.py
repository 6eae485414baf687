"""Extract one episode from one scrape target using a borrowed browser page.

Steps: navigate -> settle -> read optional fields -> reveal the audio player
if the target needs a click -> read the audio URL. Only navigation and page
snapshot errors are failures (``ExtractionFailed``). A missing audio element
is not an error; the episode just comes back without ``audio_src``.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from playwright.async_api import Page

from ..config import LOG_LEVEL
from ..errors import ExtractionFailed
from ..models.episode import Episode
from ..models.settings import ScrapeTarget
from .parser import make_soup, read_audio_src, read_text

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)


async def scrape_target(page: Page, target: ScrapeTarget) -> Episode:
    """Run the extraction steps for ``target`` on ``page``."""
    try:
        await page.goto(
            target.url,
            wait_until="domcontentloaded",
            timeout=target.navigation_timeout_ms,
        )
    except Exception as e:
        raise ExtractionFailed(
            f"Navigation to {target.url} failed: {e}", target=target.name
        ) from e

    # Client-side rendering keeps going after DOMContentLoaded
    await asyncio.sleep(target.settle_ms / 1000)

    soup = make_soup(await _snapshot(page, target))
    selectors = target.selectors
    episode = Episode(
        type=target.name,
        title=read_text(soup, selectors.title),
        description=read_text(soup, selectors.description),
        date=read_text(soup, selectors.date),
    )

    if selectors.listen_button:
        if not await _reveal_audio(page, target):
            logger.debug(f"Listen button not found for {target.name}")
            return episode
    else:
        await _wait_for_audio(page, target)

    soup = make_soup(await _snapshot(page, target))
    episode.audio_src = read_audio_src(soup, selectors.audio, base_url=page.url)

    logger.info(f"Successfully scraped {target.name} (has_audio={episode.has_audio})")
    return episode


async def _snapshot(page: Page, target: ScrapeTarget) -> str:
    try:
        return await page.content()
    except Exception as e:
        raise ExtractionFailed(
            f"Could not read rendered page for {target.name}: {e}", target=target.name
        ) from e


async def _reveal_audio(page: Page, target: ScrapeTarget) -> bool:
    """Click the listen button, then wait for the audio element to attach.

    Returns False when there is no button to click.
    """
    try:
        button = await page.query_selector(target.selectors.listen_button)
    except Exception as e:
        logger.debug(f"Listen button lookup failed for {target.name}: {e}")
        return False
    if button is None:
        return False

    try:
        await button.click(timeout=target.audio_wait_ms)
    except Exception as e:
        logger.warning(f"Could not click listen button for {target.name}: {e}")
        return False

    await asyncio.sleep(target.reveal_wait_ms / 1000)
    await _wait_for_audio(page, target)
    return True


async def _wait_for_audio(page: Page, target: ScrapeTarget) -> bool:
    try:
        element = await page.wait_for_selector(
            target.selectors.audio,
            state="attached",
            timeout=target.audio_wait_ms,
        )
    except Exception:
        logger.debug(f"Audio element did not appear for {target.name}")
        return False
    return element is not None
