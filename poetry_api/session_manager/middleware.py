"""aiohttp middlewares: JSON errors, request logging, rate limiting, security headers.

Registered outermost first by ``manager.create_app``::

    request_logger -> security_headers -> rate_limit -> error_middleware
"""

from __future__ import annotations

import logging
import math
import sys
import time
import traceback
from datetime import datetime, timezone
from typing import Callable, Optional

from aiohttp import web

from ..config import LOG_LEVEL
from ..errors import PoetryApiError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVEL)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
    "Access-Control-Allow-Origin": "*",
}

_HTTP_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMITED",
}


def error_response(
    request: web.Request,
    message: str,
    status: int,
    code: str,
    exc: Optional[BaseException] = None,
    operational: bool = True,
) -> web.Response:
    """Build the JSON error body every failing route returns."""
    production = request.app.get("environment") == "production"
    if not operational and production:
        message = "An unexpected error occurred"

    body = {
        "message": message,
        "code": code,
        "statusCode": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.path,
    }
    if exc is not None and not production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return web.json_response({"error": body}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException as e:
        if e.status < 400:
            raise
        if e.status == 404:
            message = f"Route {request.method} {request.path} not found"
        else:
            message = e.reason
        logger.warning(f"Client error in {request.method} {request.path}: {message}")
        return error_response(request, message, e.status, _HTTP_CODES.get(e.status, "HTTP_ERROR"))
    except PoetryApiError as e:
        if e.status_code >= 500:
            logger.error(f"Error in {request.method} {request.path}: {e.message}")
        else:
            logger.warning(f"Client error in {request.method} {request.path}: {e.message}")
        return error_response(request, e.message, e.status_code, e.code, e, e.operational)
    except Exception as e:
        logger.error(f"Error in {request.method} {request.path}: {e}", exc_info=True)
        return error_response(
            request, str(e) or "Internal Server Error", 500, "INTERNAL_ERROR", e, operational=False
        )


@web.middleware
async def request_logger(request: web.Request, handler) -> web.StreamResponse:
    started = time.monotonic()
    response = await handler(request)
    duration_ms = int((time.monotonic() - started) * 1000)
    level = logging.WARNING if response.status >= 400 else logging.INFO
    logger.log(
        level,
        f"{request.method} {request.path} status={response.status} "
        f"duration={duration_ms}ms ip={request.remote}",
    )
    return response


@web.middleware
async def security_headers(request: web.Request, handler) -> web.StreamResponse:
    response = await handler(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(
        self,
        limit: int,
        window: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> tuple[bool, int, float]:
        """Count one request. Returns (allowed, remaining, seconds until reset)."""
        now = self._clock()
        if len(self._windows) > 1024:
            self._windows = {
                k: v for k, v in self._windows.items() if now - v[0] < self.window
            }

        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)

        reset = max(0.0, started + self.window - now)
        return count <= self.limit, max(0, self.limit - count), reset


def rate_limit(limiter: RateLimiter, prefix: str = "/api/"):
    """Middleware applying ``limiter`` to paths under ``prefix``."""

    @web.middleware
    async def middleware(request: web.Request, handler) -> web.StreamResponse:
        if not request.path.startswith(prefix):
            return await handler(request)

        allowed, remaining, reset = limiter.hit(request.remote or "unknown")
        headers = {
            "RateLimit-Limit": str(limiter.limit),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(math.ceil(reset)),
        }
        if not allowed:
            response = error_response(
                request,
                "Too many requests from this IP, please try again later.",
                429,
                "RATE_LIMITED",
            )
        else:
            response = await handler(request)
        response.headers.update(headers)
        return response

    return middleware
