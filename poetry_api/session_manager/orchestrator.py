"""Episode service: cache, browser pool and scrape targets wired together."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Page

from ..config import LOG_LEVEL
from ..constants import EPISODES_CACHE_KEY, USER_AGENT, VIEWPORT
from ..errors import NoContentFound, ServiceUnavailable
from ..models.episode import Episode, ScrapeOutcome
from ..models.settings import ScrapeTarget
from ..models.stats import CacheStats, PoolStats
from .browser import BrowserSession
from .cache import TTLCache
from .extractor import scrape_target
from .pool import SessionPool

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)

Extractor = Callable[[Page, ScrapeTarget], Awaitable[Episode]]


class EpisodeService:
    """Produces the episode list, tolerating failure of individual targets."""

    def __init__(
        self,
        pool: SessionPool,
        cache: TTLCache,
        targets: list[ScrapeTarget],
        *,
        extractor: Extractor = scrape_target,
        cache_key: str = EPISODES_CACHE_KEY,
        page_options: Optional[dict[str, Any]] = None,
    ):
        self.pool = pool
        self.cache = cache
        self.targets = list(targets)
        self._extractor = extractor
        self._cache_key = cache_key
        self._page_options = (
            page_options
            if page_options is not None
            else {"viewport": VIEWPORT, "user_agent": USER_AGENT}
        )
        self.last_outcomes: list[ScrapeOutcome] = []
        self._draining = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def draining(self) -> bool:
        return self._draining

    async def start(self):
        await self.pool.start()
        await self.cache.start()

    async def stop(self):
        await self.cache.stop()
        await self.pool.stop()

    async def get_episodes(self) -> list[Episode]:
        """Return cached episodes, or scrape every target with one browser.

        Raises:
            NoContentFound: no target produced an episode with audio.
            ServiceUnavailable: the service is shutting down.
            PoolExhausted, SessionCreationFailed: from the browser pool.
        """
        if self._draining:
            raise ServiceUnavailable("Service is shutting down.")

        cached = self.cache.get(self._cache_key)
        if cached:
            logger.info("Returning cached poetry episodes")
            return [episode.model_copy() for episode in cached]

        self._in_flight += 1
        self._idle.clear()
        try:
            episodes = await self._scrape_all()
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

        self.cache.set(self._cache_key, episodes)
        return [episode.model_copy() for episode in episodes]

    async def _scrape_all(self) -> list[Episode]:
        session = None
        page = None
        try:
            logger.info("Acquiring browser from pool...")
            session = await self.pool.acquire()
            page = await session.new_page(**self._page_options)

            outcomes = []
            for target in self.targets:
                outcomes.append(await self._run_target(page, target))
            self.last_outcomes = outcomes

            episodes = [
                outcome.episode
                for outcome in outcomes
                if outcome.status == "record" and outcome.episode is not None
            ]
            if not episodes:
                raise NoContentFound("No audio poems found from any source")
            return episodes
        except Exception as e:
            logger.error(f"Error fetching poetry episodes: {e}")
            raise
        finally:
            if session is not None:
                # Shielded as one unit: cancelling the request mid-cleanup still releases
                await asyncio.shield(self._return_session(session, page))

    async def _return_session(self, session: BrowserSession, page: Optional[Page]):
        try:
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.error(f"Error closing page: {e}")
        finally:
            await self.pool.release(session)

    async def _run_target(self, page: Page, target: ScrapeTarget) -> ScrapeOutcome:
        try:
            episode = await asyncio.wait_for(
                self._extractor(page, target), timeout=target.task_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Failed to scrape {target.name}: timed out after {target.task_timeout}s")
            return ScrapeOutcome.failed(target.name, "timeout")
        except Exception as e:
            logger.warning(f"Failed to scrape {target.name}: {e}")
            return ScrapeOutcome.failed(target.name, str(e))

        if not episode.has_audio:
            logger.info(f"No audio found for {target.name}")
            return ScrapeOutcome.absent(target.name, episode)
        return ScrapeOutcome.record(target.name, episode)

    def clear_cache(self):
        self.cache.delete(self._cache_key)
        logger.info("Poetry cache cleared")

    def pool_stats(self) -> PoolStats:
        return self.pool.stats()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # ── Draining ─────────────────────────────────────────────────────────────

    def begin_draining(self):
        """Refuse new scrape runs; in-flight runs continue."""
        if not self._draining:
            logger.info(f"Draining episode service ({self._in_flight} run(s) in flight)")
        self._draining = True

    async def wait_idle(self, timeout: float) -> bool:
        """Wait for in-flight runs to finish. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self._in_flight} scrape run(s) still in flight after {timeout}s")
            return False
        return True
