"""Bounded pool of browser sessions shared by concurrent scrape runs.

Lifecycle: ``UNINITIALIZED -> INITIALIZING -> READY``, with ``CLOSING``
while ``shutdown()`` drains. The first ``acquire()`` initializes the pool if
nobody did; racing callers share a single pre-warm task. After shutdown the
pool is ``UNINITIALIZED`` again and the next ``acquire()`` re-initializes it.

Every mutation of ``_sessions``, ``_available``, ``_in_use`` and ``_waiters``
happens in the synchronous ``_``-prefixed helpers below, which never await.
The pool belongs to one event loop, so those helpers are the critical
section: the browser ``disconnected`` callback, ``acquire`` and ``release``
cannot interleave inside one.

Waiting callers queue FIFO. A released session is handed straight to the
oldest waiter; when capacity frees up instead (a session died or was
reclaimed, or a launch failed) the oldest waiter is granted a reservation
and launches its own browser. New callers never overtake queued ones.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional

from playwright.async_api import Browser

from ..config import LOG_LEVEL
from ..errors import PoolExhausted, SessionCreationFailed
from ..models.settings import PoolSettings
from ..models.stats import PoolCounters, PoolStats
from .browser import BrowserSession

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)

SessionFactory = Callable[[], Awaitable[Browser]]

# Granted to a waiter instead of a session: "capacity is yours, launch one".
_RESERVED = object()


class PoolState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSING = "closing"


class SessionPool:
    """Hands out at most ``max_sessions`` live browsers to concurrent callers."""

    def __init__(
        self,
        factory: SessionFactory,
        settings: Optional[PoolSettings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or PoolSettings()
        self._factory = factory
        self.min_sessions = settings.min_sessions
        self.max_sessions = settings.max_sessions
        self.idle_timeout = settings.idle_timeout
        self.acquire_timeout = settings.acquire_timeout
        self.reclaim_interval = settings.reclaim_interval
        self._clock = clock

        self._sessions: dict[int, BrowserSession] = {}
        self._available: deque[BrowserSession] = deque()
        self._in_use: set[BrowserSession] = set()
        self._releasing: set[BrowserSession] = set()
        self._waiters: deque[asyncio.Future] = deque()
        self._creating = 0  # launches in flight plus reservations granted to waiters
        self._next_id = 1

        self._state = PoolState.UNINITIALIZED
        self._generation = 0  # bumped by shutdown; stale launches are discarded
        self._init_task: Optional[asyncio.Future] = None
        self._maintenance_task: Optional[asyncio.Task] = None
        self.counters = PoolCounters()

    @property
    def state(self) -> PoolState:
        return self._state

    def stats(self) -> PoolStats:
        return PoolStats(
            total=len(self._sessions),
            available=len(self._available),
            in_use=len(self._in_use),
            max_capacity=self.max_sessions,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def initialize(self):
        """Pre-create ``min_sessions`` browsers. Safe to call repeatedly."""
        if self._state in (PoolState.READY, PoolState.CLOSING):
            return
        if self._init_task is None:
            self._state = PoolState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._prewarm(self._generation))
        await asyncio.shield(self._init_task)

    async def _prewarm(self, generation: int):
        logger.info("Initializing browser pool...")
        try:
            for i in range(self.min_sessions):
                if generation != self._generation:
                    return
                try:
                    session = await self._create_session()
                except SessionCreationFailed as e:
                    logger.error(f"Failed to create browser {i + 1}: {e}")
                    continue
                self._available.append(session)

            if generation == self._generation:
                self._state = PoolState.READY
                logger.info(f"Browser pool initialized with {len(self._sessions)} browsers")
                self._dispatch()
        finally:
            if generation == self._generation:
                self._init_task = None

    async def start(self):
        """Initialize and start the periodic idle-reclamation sweep."""
        await self.initialize()
        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def stop(self):
        task, self._maintenance_task = self._maintenance_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.shutdown()

    async def shutdown(self):
        """Close every session, in use or not, and reset to uninitialized."""
        logger.info("Shutting down browser pool...")
        self._state = PoolState.CLOSING
        self._generation += 1
        self._init_task = None

        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._available.clear()
        self._in_use.clear()
        self._releasing.clear()

        waiters, self._waiters = list(self._waiters), deque()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(PoolExhausted("Browser pool is shutting down."))

        for session in sessions:
            await self._close_quietly(session)

        self._state = PoolState.UNINITIALIZED
        logger.info("Browser pool shutdown complete")

    async def _ensure_ready(self):
        while self._state is not PoolState.READY:
            if self._state is PoolState.CLOSING:
                raise PoolExhausted("Browser pool is shutting down.")
            await self.initialize()

    # ── Acquire / Release ────────────────────────────────────────────────────

    async def acquire(self, timeout: Optional[float] = None) -> BrowserSession:
        """Borrow a session. Must be paired with ``release()``.

        Raises:
            PoolExhausted: no session became available within ``timeout``
                (default ``acquire_timeout``) or the pool is shutting down.
            SessionCreationFailed: a new browser could not be launched.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.acquire_timeout if timeout is None else timeout)

        while True:
            await self._ensure_ready()

            if not self._waiters:
                session = self._take_available()
                if session is not None:
                    return self._checkout(session)
                if self._live_count() < self.max_sessions:
                    session = await self._create_session()
                    logger.info(f"Created new browser. Pool size: {len(self._sessions)}")
                    return self._checkout(session)

            remaining = deadline - loop.time()
            if remaining <= 0:
                self.counters.timeouts += 1
                raise PoolExhausted("Timeout waiting for available browser")

            logger.warning("Browser pool at capacity, waiting for available browser...")
            grant = await self._wait(remaining)

            if grant is _RESERVED:
                if self._state is not PoolState.READY:
                    self._creating -= 1
                    continue
                session = await self._create_session(reserved=True)
                logger.info(f"Created new browser. Pool size: {len(self._sessions)}")
                return self._checkout(session)

            if grant.id in self._sessions and grant.is_connected:
                return self._checkout(grant)
            # Handed-over session died before we resumed.
            self._discard(grant)

    async def release(self, session: Optional[BrowserSession]):
        """Return a borrowed session. Releasing twice is a no-op."""
        if session is None or session not in self._in_use or session in self._releasing:
            return

        if not session.is_connected:
            logger.warning(f"Released browser {session.id} is disconnected; dropping it")
            self._discard(session)
            return

        self._releasing.add(session)
        try:
            closed = await session.trim()
        except Exception as e:
            logger.error(f"Error cleaning up browser pages: {e}")
            await self._destroy(session)
            return
        finally:
            self._releasing.discard(session)

        if session.id not in self._sessions:
            return  # disconnected or shut down during cleanup

        if closed:
            logger.debug(f"Closed {closed} leftover page(s) on browser {session.id}")
        self._in_use.discard(session)
        session.last_used = self._clock()
        self.counters.released += 1
        self._available.append(session)
        self._dispatch()

    # ── Maintenance ──────────────────────────────────────────────────────────

    async def reclaim_idle(self) -> int:
        """Close available sessions idle past ``idle_timeout``, keeping ``min_sessions``."""
        now = self._clock()
        idle: list[BrowserSession] = []
        for session in list(self._available):
            if len(self._sessions) - len(idle) <= self.min_sessions:
                break
            if now - session.last_used > self.idle_timeout:
                idle.append(session)

        for session in idle:
            self._discard(session)
        for session in idle:
            logger.info(f"Closing idle browser {session.id}")
            self.counters.reclaimed += 1
            await self._close_quietly(session)
        return len(idle)

    async def replenish(self) -> int:
        """Launch browsers until the pool is back at ``min_sessions``."""
        created = 0
        while self._state is PoolState.READY and self._live_count() < self.min_sessions:
            try:
                session = await self._create_session()
            except SessionCreationFailed:
                break
            self._available.append(session)
            self._dispatch()
            created += 1
        if created:
            logger.info(f"Replenished {created} browser(s). Pool size: {len(self._sessions)}")
        return created

    async def _maintenance_loop(self):
        while True:
            await asyncio.sleep(self.reclaim_interval)
            try:
                await self.reclaim_idle()
                await self.replenish()
            except Exception as e:
                logger.error(f"Browser pool maintenance failed: {e}", exc_info=True)

    # ── Internals ────────────────────────────────────────────────────────────

    def _live_count(self) -> int:
        return len(self._sessions) + self._creating

    async def _create_session(self, *, reserved: bool = False) -> BrowserSession:
        generation = self._generation
        if not reserved:
            self._creating += 1

        launched = False
        try:
            browser = await self._factory()
            launched = True
        except Exception as e:
            self.counters.creation_failures += 1
            logger.error(f"Failed to create browser: {e}")
            raise SessionCreationFailed(f"Failed to launch browser: {e}") from e
        finally:
            self._creating -= 1
            if not launched:
                self._dispatch()

        if generation != self._generation:
            logger.warning("Browser finished launching after pool shutdown; closing it")
            try:
                await browser.close()
            except Exception as e:
                logger.error(f"Error closing browser: {e}")
            raise SessionCreationFailed("Browser pool was shut down during launch.")

        session = BrowserSession(browser, self._next_id, self._clock())
        self._next_id += 1
        self._sessions[session.id] = session
        browser.on("disconnected", lambda *_: self._handle_disconnect(session))
        self.counters.created += 1
        return session

    def _handle_disconnect(self, session: BrowserSession):
        if session.id not in self._sessions:
            return
        logger.warning(f"Browser {session.id} disconnected; removing from pool")
        self.counters.disconnected += 1
        self._discard(session)

    def _take_available(self) -> Optional[BrowserSession]:
        while self._available:
            session = self._available.popleft()
            if session.is_connected:
                return session
            self._discard(session)
        return None

    def _checkout(self, session: BrowserSession) -> BrowserSession:
        self._in_use.add(session)
        session.last_used = self._clock()
        self.counters.acquired += 1
        return session

    def _discard(self, session: BrowserSession) -> bool:
        """Forget a session everywhere. Returns False if it was not tracked."""
        if self._sessions.pop(session.id, None) is None:
            return False
        try:
            self._available.remove(session)
        except ValueError:
            pass
        self._in_use.discard(session)
        self._releasing.discard(session)
        self.counters.destroyed += 1
        self._dispatch()
        return True

    def _dispatch(self):
        """Serve queued waiters from available sessions or free capacity."""
        while self._waiters and self._state is PoolState.READY:
            waiter = self._waiters[0]
            if waiter.done():
                self._waiters.popleft()
                continue
            session = self._take_available()
            if session is not None:
                self._waiters.popleft()
                self._in_use.add(session)
                waiter.set_result(session)
                continue
            if self._live_count() < self.max_sessions:
                self._waiters.popleft()
                self._creating += 1
                waiter.set_result(_RESERVED)
                continue
            break

    async def _wait(self, timeout: float):
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._dispatch()
        try:
            await asyncio.wait((waiter,), timeout=timeout)
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

        if waiter.done():
            return waiter.result()

        self._abandon(waiter)
        self.counters.timeouts += 1
        raise PoolExhausted(f"Timeout waiting for available browser after {timeout:.1f}s")

    def _abandon(self, waiter: asyncio.Future):
        """Withdraw a waiter, giving back anything it was granted."""
        if not waiter.done():
            waiter.cancel()
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass
            return

        if waiter.cancelled() or waiter.exception() is not None:
            return
        grant = waiter.result()
        if grant is _RESERVED:
            self._creating -= 1
        elif grant.id in self._sessions:
            self._in_use.discard(grant)
            self._available.append(grant)
        self._dispatch()

    async def _destroy(self, session: BrowserSession):
        self._discard(session)
        await self._close_quietly(session)

    @staticmethod
    async def _close_quietly(session: BrowserSession):
        try:
            await session.close()
        except Exception as e:
            logger.error(f"Error closing browser: {e}")
