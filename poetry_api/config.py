"""Application configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

from .constants import SCRAPING_TARGETS
from .models.settings import CacheSettings, PoolSettings, ScrapeTarget, TargetSelectors

load_dotenv()

# Service
APP_ENV = os.getenv("APP_ENV", "development")
SERVICE_HOST = os.getenv("HOST", "0.0.0.0")
SERVICE_PORT = int(os.getenv("PORT", "3000"))
SERVICE_URL = f"http://{'127.0.0.1' if SERVICE_HOST == '0.0.0.0' else SERVICE_HOST}:{SERVICE_PORT}"
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").upper()

# Browser
BROWSER_ENGINE = os.getenv("BROWSER_ENGINE", "chromium").lower()  # "chromium" or "camoufox"
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() != "false"
BROWSER_EXECUTABLE_PATH = os.getenv("BROWSER_EXECUTABLE_PATH") or None
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "10000"))  # ms, per navigation
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# Browser pool (ms)
BROWSER_POOL_MIN = int(os.getenv("BROWSER_POOL_MIN", "1"))
BROWSER_POOL_MAX = int(os.getenv("BROWSER_POOL_MAX", "3"))
BROWSER_IDLE_TIMEOUT = int(os.getenv("BROWSER_IDLE_TIMEOUT", "30000"))
BROWSER_ACQUIRE_TIMEOUT = int(os.getenv("BROWSER_ACQUIRE_TIMEOUT", "30000"))
BROWSER_RECLAIM_INTERVAL = int(os.getenv("BROWSER_RECLAIM_INTERVAL", "60000"))

# Cache (ms)
CACHE_TTL = int(os.getenv("CACHE_TTL", "300000"))  # 5 minutes
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() != "false"
CACHE_CLEANUP_INTERVAL = int(os.getenv("CACHE_CLEANUP_INTERVAL", "300000"))

# Rate limiting
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60000"))  # ms
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "10"))

# Hard upper bound on graceful shutdown before the process is killed
SHUTDOWN_TIMEOUT = int(os.getenv("SHUTDOWN_TIMEOUT", "30000"))  # ms


def pool_settings() -> PoolSettings:
    """Build validated browser pool settings from the environment."""
    return PoolSettings(
        min_sessions=BROWSER_POOL_MIN,
        max_sessions=BROWSER_POOL_MAX,
        idle_timeout=BROWSER_IDLE_TIMEOUT / 1000,
        acquire_timeout=BROWSER_ACQUIRE_TIMEOUT / 1000,
        reclaim_interval=BROWSER_RECLAIM_INTERVAL / 1000,
    )


def cache_settings() -> CacheSettings:
    """Build validated cache settings from the environment."""
    return CacheSettings(
        ttl=CACHE_TTL / 1000,
        enabled=CACHE_ENABLED,
        cleanup_interval=CACHE_CLEANUP_INTERVAL / 1000,
    )


def scrape_targets() -> list[ScrapeTarget]:
    """Scrape targets in the order their episodes are returned."""
    return [
        ScrapeTarget(
            name=spec["name"],
            url=spec["url"],
            selectors=TargetSelectors(**spec["selectors"]),
            navigation_timeout_ms=BROWSER_TIMEOUT,
        )
        for spec in SCRAPING_TARGETS
    ]
