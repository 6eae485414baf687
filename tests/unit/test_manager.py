"""Tests for the aiohttp service: routes, error mapping and middlewares."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from poetry_api.session_manager import manager
from poetry_api.session_manager.cache import TTLCache
from poetry_api.session_manager.manager import create_app, on_cleanup, on_shutdown
from poetry_api.session_manager.middleware import RateLimiter
from poetry_api.session_manager.orchestrator import EpisodeService
from tests.mocks.mock_browser import FakeFactory
from tests.mocks.mock_factories import make_episode, make_target


async def _extract(page, target):
    if target.name == "Poem of the Day":
        return make_episode(target.name)
    return make_episode(target.name, audio=None)


async def _extract_nothing(page, target):
    return make_episode(target.name, audio=None)


async def _extract_forever(page, target):
    await asyncio.sleep(10)


@pytest.fixture
def service(make_pool, cache: TTLCache) -> EpisodeService:
    """Return an episode service whose first target has audio."""
    return EpisodeService(
        make_pool(min_sessions=1, max_sessions=2),
        cache,
        [make_target("Poem of the Day"), make_target("Audio Poem of the Day")],
        extractor=_extract,
    )


def _client(service: EpisodeService, **kwargs) -> TestClient:
    kwargs.setdefault("shutdown_timeout", None)
    return TestClient(TestServer(create_app(service, **kwargs)))


@pytest.mark.unit
class TestRoutes:
    """Test each endpoint's happy path."""

    @pytest.mark.asyncio
    async def test_health(self, service: EpisodeService) -> None:
        """Health reports status, pool and cache snapshots."""
        async with _client(service) as client:
            resp = await client.get("/health")
            body = await resp.json()

        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["environment"] == "development"
        assert body["browserPool"]["maxCapacity"] == 2
        assert body["cache"]["enabled"] is True

    @pytest.mark.asyncio
    async def test_poetry_episode(self, service: EpisodeService) -> None:
        """Episodes come back with camelCase audioSrc."""
        async with _client(service) as client:
            resp = await client.get("/api/poetry-episode")
            body = await resp.json()

        assert resp.status == 200
        assert body == [
            {
                "type": "Poem of the Day",
                "title": "Poem of the Day title",
                "description": None,
                "audioSrc": "https://cdn.example.org/poem.mp3",
                "date": None,
            }
        ]

    @pytest.mark.asyncio
    async def test_cache_clear_and_stats(self, service: EpisodeService) -> None:
        """Clearing the cache empties it."""
        async with _client(service) as client:
            await client.get("/api/poetry-episode")
            before = await (await client.get("/api/cache/stats")).json()
            resp = await client.post("/api/cache/clear")
            body = await resp.json()
            after = await (await client.get("/api/cache/stats")).json()

        assert before["total"] == 1
        assert body == {"success": True, "message": "Poetry cache cleared successfully"}
        assert after["total"] == 0

    @pytest.mark.asyncio
    async def test_pool_stats(self, service: EpisodeService) -> None:
        """Pool stats are served with API key names."""
        async with _client(service) as client:
            resp = await client.get("/api/pool/stats")
            body = await resp.json()

        assert body == {"total": 1, "available": 1, "inUse": 0, "maxCapacity": 2}

    @pytest.mark.asyncio
    async def test_security_headers(self, service: EpisodeService) -> None:
        """Responses carry the hardening headers."""
        async with _client(service) as client:
            resp = await client.get("/health")

        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.unit
class TestErrors:
    """Test error responses."""

    @pytest.mark.asyncio
    async def test_no_content_is_404(self, service: EpisodeService) -> None:
        """No episodes with audio maps to 404 NO_CONTENT_FOUND."""
        service._extractor = _extract_nothing
        async with _client(service) as client:
            resp = await client.get("/api/poetry-episode")
            body = await resp.json()

        error = body["error"]
        assert resp.status == 404
        assert error["code"] == "NO_CONTENT_FOUND"
        assert error["statusCode"] == 404
        assert error["path"] == "/api/poetry-episode"
        assert "stack" in error

    @pytest.mark.asyncio
    async def test_launch_failure_is_503(self, cache: TTLCache, make_pool, factory: FakeFactory) -> None:
        """A browser that cannot be launched maps to 503."""
        factory.fail_next = 10
        service = EpisodeService(
            make_pool(min_sessions=0, max_sessions=1),
            cache,
            [make_target("Poem of the Day")],
            extractor=_extract,
        )
        async with _client(service) as client:
            resp = await client.get("/api/poetry-episode")
            body = await resp.json()

        assert resp.status == 503
        assert body["error"]["code"] == "SESSION_CREATION_FAILED"

    @pytest.mark.asyncio
    async def test_unexpected_error_hidden_in_production(self, service: EpisodeService) -> None:
        """Unexpected errors are 500s with a generic message and no stack in production."""
        service.get_episodes = AsyncMock(side_effect=RuntimeError("database password leaked"))
        async with _client(service, environment="production") as client:
            resp = await client.get("/api/poetry-episode")
            body = await resp.json()

        error = body["error"]
        assert resp.status == 500
        assert error["code"] == "INTERNAL_ERROR"
        assert error["message"] == "An unexpected error occurred"
        assert "stack" not in error

    @pytest.mark.asyncio
    async def test_unknown_route(self, service: EpisodeService) -> None:
        """Unknown routes get the JSON 404 body."""
        async with _client(service) as client:
            resp = await client.get("/api/nope")
            body = await resp.json()

        assert resp.status == 404
        assert body["error"]["message"] == "Route GET /api/nope not found"

    @pytest.mark.asyncio
    async def test_wrong_method(self, service: EpisodeService) -> None:
        """GET on a POST-only route is a 405."""
        async with _client(service) as client:
            resp = await client.get("/api/cache/clear")

        assert resp.status == 405

    @pytest.mark.asyncio
    async def test_draining_is_503(self, service: EpisodeService) -> None:
        """Requests during shutdown are refused with 503."""
        service.begin_draining()
        async with _client(service) as client:
            resp = await client.get("/api/poetry-episode")
            health = await (await client.get("/health")).json()

        assert resp.status == 503
        assert health["status"] == "draining"


@pytest.mark.unit
class TestRateLimit:
    """Test the /api/ rate limiter."""

    @pytest.mark.asyncio
    async def test_limit_exceeded_is_429(self, service: EpisodeService) -> None:
        """Requests beyond the window limit are rejected."""
        async with _client(service, rate_limiter=RateLimiter(2, 60.0)) as client:
            statuses = [(await client.get("/api/cache/stats")).status for _ in range(3)]
            limited = await client.get("/api/cache/stats")
            body = await limited.json()
            health = await client.get("/health")

        assert statuses == [200, 200, 429]
        assert limited.headers["RateLimit-Remaining"] == "0"
        assert body["error"]["message"] == (
            "Too many requests from this IP, please try again later."
        )
        assert health.status == 200

    def test_window_resets(self) -> None:
        """A new window starts once the old one has elapsed."""
        now = [0.0]
        limiter = RateLimiter(1, 10.0, clock=lambda: now[0])

        assert limiter.hit("a")[0] is True
        assert limiter.hit("a")[0] is False
        assert limiter.hit("b")[0] is True
        now[0] = 10.0
        assert limiter.hit("a") == (True, 0, 10.0)


@pytest.mark.unit
class TestLifecycle:
    """Test startup and shutdown hooks."""

    @pytest.mark.asyncio
    async def test_startup_prewarms_and_cleanup_closes(
        self, service: EpisodeService, factory: FakeFactory
    ) -> None:
        """Startup pre-warms the pool; cleanup closes every browser and the watchdog."""
        app = create_app(service, shutdown_timeout=5.0)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/pool/stats")
            assert (await resp.json())["total"] == 1

        assert all(browser.closed for browser in factory.browsers)
        assert service.draining
        watchdog = app["runtime"]["watchdog"]
        assert watchdog is not None
        assert watchdog.finished.is_set()

    @pytest.mark.asyncio
    async def test_stuck_run_closed_before_watchdog(
        self, make_pool, cache: TTLCache, factory: FakeFactory, monkeypatch
    ) -> None:
        """A run that outlives the drain budget has its browser closed before the watchdog fires."""
        exits: list[bool] = []
        monkeypatch.setattr(manager, "_force_exit", lambda: exits.append(True))
        service = EpisodeService(
            make_pool(min_sessions=0, max_sessions=1),
            cache,
            [make_target("Poem of the Day")],
            extractor=_extract_forever,
        )
        app = create_app(service, shutdown_timeout=0.4)
        await service.start()
        run = asyncio.create_task(service.get_episodes())
        await asyncio.sleep(0.05)

        await on_shutdown(app)

        assert factory.browsers[0].closed
        assert service.pool_stats().total == 0
        assert exits == []

        await on_cleanup(app)
        assert app["runtime"]["watchdog"].finished.is_set()
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run
        assert exits == []
