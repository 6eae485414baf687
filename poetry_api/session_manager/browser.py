"""Browser automation: launching browsers and wrapping them as pooled sessions."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Optional

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import Browser, Page, Playwright, async_playwright

from ..config import (
    BROWSER_ARGS,
    BROWSER_ENGINE,
    BROWSER_EXECUTABLE_PATH,
    BROWSER_HEADLESS,
    LOG_LEVEL,
)
from ..errors import Disconnected

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)


class BrowserSession:
    """One pooled browser. Owned by the pool; callers only borrow it."""

    def __init__(self, browser: Browser, session_id: int, now: float):
        self.id = session_id
        self.browser = browser
        self.created_at = now
        self.last_used = now

    def __repr__(self) -> str:
        return f"<BrowserSession id={self.id} connected={self.is_connected}>"

    @property
    def is_connected(self) -> bool:
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False

    def pages(self) -> list[Page]:
        return [page for context in self.browser.contexts for page in context.pages]

    async def new_page(self, **context_options: Any) -> Page:
        """Open a page in a fresh context (viewport, user agent, ...)."""
        if not self.is_connected:
            raise Disconnected(f"Browser session {self.id} is disconnected.")
        context = await self.browser.new_context(**context_options)
        return await context.new_page()

    async def trim(self) -> int:
        """Close every page but one, and every context not holding it.

        Returns the number of pages closed.
        """
        closed = 0
        kept: Optional[Page] = None
        for context in list(self.browser.contexts):
            for page in list(context.pages):
                if kept is None:
                    kept = page
                    continue
                await page.close()
                closed += 1
            if kept is None or kept.context is not context:
                await context.close()
        return closed

    async def close(self):
        """Close all pages, then the browser. Already-dead browsers are skipped."""
        if not self.is_connected:
            return
        pages = self.pages()
        if pages:
            await asyncio.gather(*(page.close() for page in pages), return_exceptions=True)
        await self.browser.close()


class BrowserLauncher:
    """Session factory for the pool.

    ``chromium`` drives Playwright's bundled Chromium through one shared
    Playwright driver. ``camoufox`` launches the anti-detection Firefox build;
    each Camoufox browser owns its own driver, which is torn down when that
    browser disconnects.
    """

    def __init__(
        self,
        engine: str = BROWSER_ENGINE,
        headless: bool = BROWSER_HEADLESS,
        executable_path: Optional[str] = BROWSER_EXECUTABLE_PATH,
        args: Optional[list[str]] = None,
    ):
        if engine not in ("chromium", "camoufox"):
            raise ValueError(f"Unsupported browser engine: {engine}")
        self.engine = engine
        self.headless = headless
        self.executable_path = executable_path
        self.args = list(BROWSER_ARGS if args is None else args)
        self._playwright: Optional[Playwright] = None
        self._driver_lock = asyncio.Lock()
        self._camoufox: dict[int, AsyncCamoufox] = {}
        self._teardowns: set[asyncio.Task] = set()

    async def __call__(self) -> Browser:
        return await self.launch()

    async def launch(self) -> Browser:
        logger.info(f"Launching {self.engine} (headless={self.headless})...")
        if self.engine == "camoufox":
            return await self._launch_camoufox()
        return await self._launch_chromium()

    async def _launch_chromium(self) -> Browser:
        async with self._driver_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self.headless,
            args=self.args,
            executable_path=self.executable_path,
        )

    async def _launch_camoufox(self) -> Browser:
        camoufox = AsyncCamoufox(
            headless=self.headless,
            humanize=True,
            i_know_what_im_doing=True,
            config={"forceScopeAccess": True},
            disable_coop=True,
        )
        browser = await camoufox.__aenter__()
        self._camoufox[id(browser)] = camoufox
        browser.on("disconnected", lambda *_: self._teardown_camoufox(browser))
        return browser

    def _teardown_camoufox(self, browser: Browser):
        camoufox = self._camoufox.pop(id(browser), None)
        if camoufox is None:
            return
        task = asyncio.ensure_future(self._exit_camoufox(camoufox))
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)

    @staticmethod
    async def _exit_camoufox(camoufox: AsyncCamoufox):
        try:
            await camoufox.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing camoufox: {e}")

    async def stop(self):
        """Stop every driver this launcher started."""
        for camoufox in list(self._camoufox.values()):
            await self._exit_camoufox(camoufox)
        self._camoufox.clear()
        if self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)

        try:
            if self._playwright:
                await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")
        finally:
            self._playwright = None
        logger.info("Browser launcher stopped.")
