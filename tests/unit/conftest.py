"""Shared pytest fixtures for unit tests."""

from __future__ import annotations

import pytest

from poetry_api.models.settings import PoolSettings
from poetry_api.session_manager.cache import TTLCache
from poetry_api.session_manager.pool import SessionPool
from tests.mocks.mock_browser import FakeClock, FakeFactory


@pytest.fixture
def clock() -> FakeClock:
    """Return a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def factory() -> FakeFactory:
    """Return a session factory producing fake browsers."""
    return FakeFactory()


@pytest.fixture
def make_pool(factory: FakeFactory, clock: FakeClock):
    """Return a builder for pools over the fake factory."""

    def _make(**settings: object) -> SessionPool:
        settings.setdefault("acquire_timeout", 1.0)
        return SessionPool(factory, PoolSettings(**settings), clock=clock)

    return _make


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    """Return an enabled cache with a 300s TTL."""
    return TTLCache(300.0, clock=clock)
