"""In-memory result cache with per-entry TTL.

Expired entries are evicted lazily, when a read finds them, and actively by
a background sweep so keys written once and never read again do not pile up.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import LOG_LEVEL
from ..models.stats import CacheStats

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float


class TTLCache:
    """Key/value store whose entries expire ``ttl`` seconds after being set."""

    def __init__(
        self,
        default_ttl: float,
        *,
        enabled: bool = True,
        cleanup_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now > entry.expires_at

    def get(self, key: str) -> Any:
        """Return the cached value, or None if disabled, missing or expired."""
        if not self.enabled:
            return None

        entry = self._store.get(key)
        if entry is None:
            return None

        if self._expired(entry, self._clock()):
            self.delete(key)
            logger.debug(f"Cache expired for key: {key}")
            return None

        logger.debug(f"Cache hit for key: {key}")
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Store ``value``, replacing any existing entry."""
        if not self.enabled:
            return

        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        self._store[key] = CacheEntry(value=value, expires_at=now + ttl, created_at=now)
        logger.debug(f"Cache set for key: {key}, TTL: {ttl}s")

    def delete(self, key: str) -> bool:
        deleted = self._store.pop(key, None) is not None
        if deleted:
            logger.debug(f"Cache deleted for key: {key}")
        return deleted

    def clear(self) -> int:
        size = len(self._store)
        self._store.clear()
        logger.info(f"Cache cleared: {size} entries removed")
        return size

    def cleanup(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        expired_keys = [key for key, entry in self._store.items() if self._expired(entry, now)]
        for key in expired_keys:
            del self._store[key]

        if expired_keys:
            logger.debug(f"Cache cleanup: {len(expired_keys)} expired entries removed")
        return len(expired_keys)

    def stats(self) -> CacheStats:
        now = self._clock()
        expired = sum(1 for entry in self._store.values() if self._expired(entry, now))
        return CacheStats(
            total=len(self._store),
            valid=len(self._store) - expired,
            expired=expired,
            enabled=self.enabled,
        )

    # ── Background sweep ─────────────────────────────────────────────────────

    async def start(self):
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self):
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()
