"""Poetry episodes HTTP service.

Runs a lightweight aiohttp web server in front of the episode service: a
bounded browser pool, a TTL cache and the Poetry Foundation scrape targets.

Endpoints:
    GET  /health                - Liveness plus pool and cache snapshots
    GET  /api/poetry-episode    - Episodes with audio (cached)
    POST /api/cache/clear       - Drop cached episodes
    GET  /api/cache/stats       - Cache statistics
    GET  /api/pool/stats        - Browser pool statistics

Shutdown: stop accepting connections, refuse new scrape runs, wait up to half
of ``SHUTDOWN_TIMEOUT`` for in-flight runs, then close every browser. A
watchdog kills the process if the whole sequence overruns ``SHUTDOWN_TIMEOUT``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from ..config import (
    APP_ENV,
    LOG_LEVEL,
    RATE_LIMIT_MAX,
    RATE_LIMIT_WINDOW,
    SERVICE_HOST,
    SERVICE_PORT,
    SHUTDOWN_TIMEOUT,
    cache_settings,
    pool_settings,
    scrape_targets,
)
from .browser import BrowserLauncher
from .cache import TTLCache
from .middleware import (
    RateLimiter,
    error_middleware,
    rate_limit,
    request_logger,
    security_headers,
)
from .orchestrator import EpisodeService
from .pool import SessionPool

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)


def build_service(launcher: BrowserLauncher) -> EpisodeService:
    """Wire the pool, cache and scrape targets from environment config."""
    settings = cache_settings()
    pool = SessionPool(launcher, pool_settings())
    cache = TTLCache(
        settings.ttl,
        enabled=settings.enabled,
        cleanup_interval=settings.cleanup_interval,
    )
    return EpisodeService(pool, cache, scrape_targets())


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_health(request: web.Request) -> web.Response:
    service: EpisodeService = request.app["service"]
    return web.json_response({
        "status": "draining" if service.draining else "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - request.app["started_at"], 3),
        "browserPool": service.pool_stats().model_dump(by_alias=True),
        "cache": service.cache_stats().model_dump(),
        "environment": request.app["environment"],
    })


async def handle_poetry_episode(request: web.Request) -> web.Response:
    service: EpisodeService = request.app["service"]
    episodes = await service.get_episodes()
    return web.json_response([episode.to_api() for episode in episodes])


async def handle_cache_clear(request: web.Request) -> web.Response:
    service: EpisodeService = request.app["service"]
    service.clear_cache()
    return web.json_response({
        "success": True,
        "message": "Poetry cache cleared successfully",
    })


async def handle_cache_stats(request: web.Request) -> web.Response:
    service: EpisodeService = request.app["service"]
    return web.json_response(service.cache_stats().model_dump())


async def handle_pool_stats(request: web.Request) -> web.Response:
    service: EpisodeService = request.app["service"]
    return web.json_response(service.pool_stats().model_dump(by_alias=True))


# ── Lifecycle ────────────────────────────────────────────────────────────────


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict):
    exc = context.get("exception")
    logger.error(f"Unhandled error in event loop: {context.get('message')}", exc_info=exc)


async def on_startup(app: web.Application):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)

    service: EpisodeService = app["service"]
    try:
        await service.start()
        logger.info("Browser pool initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize browser pool: {e}", exc_info=True)
    logger.info(f"Poetry API started (environment={app['environment']})")


async def on_shutdown(app: web.Application):
    timeout = app["shutdown_timeout"]
    if timeout:
        watchdog = threading.Timer(timeout, _force_exit)
        watchdog.daemon = True
        watchdog.start()
        app["runtime"]["watchdog"] = watchdog

    service: EpisodeService = app["service"]
    service.begin_draining()
    if timeout and not await service.wait_idle(_drain_budget(timeout)):
        # Close browsers of stuck runs while the watchdog still has time left
        logger.warning("Forcing browser pool shutdown with scrape runs still in flight")
        await service.stop()


def _drain_budget(timeout: float) -> float:
    """Half the shutdown budget drains runs; aiohttp gets the other half for handlers."""
    return timeout / 2


async def on_cleanup(app: web.Application):
    service: EpisodeService = app["service"]
    try:
        await service.stop()
        launcher: Optional[BrowserLauncher] = app["launcher"]
        if launcher is not None:
            await launcher.stop()
        logger.info("Graceful shutdown complete")
    finally:
        watchdog: Optional[threading.Timer] = app["runtime"]["watchdog"]
        if watchdog is not None:
            watchdog.cancel()


def _force_exit():
    logger.error("Forced shutdown after timeout")
    os._exit(1)


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(
    service: Optional[EpisodeService] = None,
    *,
    environment: str = APP_ENV,
    shutdown_timeout: Optional[float] = SHUTDOWN_TIMEOUT / 1000,
    rate_limiter: Optional[RateLimiter] = None,
) -> web.Application:
    """Build the web app. ``service`` defaults to one built from config."""
    launcher = None
    if service is None:
        launcher = BrowserLauncher()
        service = build_service(launcher)

    limiter = rate_limiter or RateLimiter(RATE_LIMIT_MAX, RATE_LIMIT_WINDOW / 1000)
    app = web.Application(
        middlewares=[request_logger, security_headers, rate_limit(limiter), error_middleware]
    )
    app["service"] = service
    app["launcher"] = launcher
    app["runtime"] = {"watchdog": None}
    app["environment"] = environment
    app["shutdown_timeout"] = shutdown_timeout
    app["started_at"] = time.monotonic()

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/poetry-episode", handle_poetry_episode)
    app.router.add_post("/api/cache/clear", handle_cache_clear)
    app.router.add_get("/api/cache/stats", handle_cache_stats)
    app.router.add_get("/api/pool/stats", handle_pool_stats)

    return app


def main():
    """Run the episode service as a standalone HTTP service."""
    app = create_app()
    web.run_app(
        app,
        host=SERVICE_HOST,
        port=SERVICE_PORT,
        shutdown_timeout=_drain_budget(SHUTDOWN_TIMEOUT / 1000),
    )


if __name__ == "__main__":
    main()
