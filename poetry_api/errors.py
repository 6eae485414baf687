"""Typed errors raised by the browser pool, cache and episode service."""

from __future__ import annotations

from typing import Optional


class PoetryApiError(Exception):
    """Base error. Carries the HTTP status and a stable code for the API layer."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        operational: bool = True,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.operational = operational


class SessionCreationFailed(PoetryApiError):
    """A browser could not be launched. Callers may retry."""

    status_code = 503
    code = "SESSION_CREATION_FAILED"


class PoolExhausted(PoetryApiError):
    """No browser became available before the acquire timeout."""

    status_code = 503
    code = "POOL_EXHAUSTED"


class Disconnected(PoetryApiError):
    status_code = 503
    code = "SESSION_DISCONNECTED"


class ExtractionFailed(PoetryApiError):
    """One scrape target failed to navigate or read."""

    status_code = 502
    code = "EXTRACTION_FAILED"

    def __init__(self, message: str, *, target: str = ""):
        super().__init__(message)
        self.target = target


class NoContentFound(PoetryApiError):
    """Every scrape target failed or had no audio."""

    status_code = 404
    code = "NO_CONTENT_FOUND"


class ServiceUnavailable(PoetryApiError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
