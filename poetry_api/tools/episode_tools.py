"""MCP tools for reading poetry episodes from the HTTP service."""

from __future__ import annotations

import json
from typing import Optional

import httpx

from ..config import SERVICE_URL

# Codes worth retrying: the pool is busy or the service is throttling
RETRYABLE_CODES = {
    "POOL_EXHAUSTED",
    "SESSION_CREATION_FAILED",
    "SESSION_DISCONNECTED",
    "SERVICE_UNAVAILABLE",
    "RATE_LIMITED",
}


async def service_is_up(timeout: float = 2.0) -> bool:
    """Return True when an episode service answers ``/health`` with status ok."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(f"{SERVICE_URL}/health")
    except httpx.HTTPError:
        return False
    if resp.status_code != 200:
        return False
    try:
        return resp.json().get("status") == "ok"
    except ValueError:
        return False


async def _call_episode_service(method: str, path: str) -> dict | list:
    """Make a request to the episode HTTP service.

    Failures come back as ``{"error": message, "code": code}``. ``code`` is the
    service's error code, or None when the request never got an API answer.
    """
    url = f"{SERVICE_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=120.0) as client:
            if method == "GET":
                resp = await client.get(url)
            else:
                resp = await client.post(url)

            if resp.status_code >= 400:
                return _error_from_response(resp)
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "Episode service is not reachable at "
            f"{SERVICE_URL}. It should auto-start with the MCP server. "
            "If running standalone: python -m poetry_api.session_manager",
            "code": None,
        }
    except httpx.TimeoutException:
        return {
            "error": "Episode service timed out. The browsers may still be loading.",
            "code": None,
        }
    except Exception as e:
        return {"error": f"Failed to connect to episode service: {e}", "code": None}


def _error_from_response(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        data = None
    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return {"error": f"HTTP {resp.status_code}", "code": None}
    return {
        "error": error.get("message") or f"HTTP {resp.status_code}",
        "code": error.get("code"),
    }


def _format_error(result: dict) -> str:
    code: Optional[str] = result.get("code")
    text = f"Error [{code}]: {result['error']}" if code else f"Error: {result['error']}"
    if code in RETRYABLE_CODES:
        text += " (temporary, retry in a few seconds)"
    return text


async def get_poetry_episodes() -> str:
    """Fetch today's Poetry Foundation poems that come with an audio reading.

    Returns:
        Readable list of episodes with title, description and audio URL.
    """
    result = await _call_episode_service("GET", "/api/poetry-episode")

    if isinstance(result, dict) and "error" in result:
        return _format_error(result)

    lines = [f"Found {len(result)} poetry episode(s):\n"]
    for i, episode in enumerate(result, 1):
        header = f"{i}. **{episode.get('title') or 'Untitled'}** ({episode.get('type', '')})"
        if episode.get("date"):
            header += f" - {episode['date']}"
        lines.append(header)
        if episode.get("description"):
            lines.append(f"   {episode['description']}")
        lines.append(f"   Audio: {episode.get('audioSrc', '')}\n")

    return "\n".join(lines)


async def clear_episode_cache() -> str:
    """Drop cached episodes so the next fetch scrapes fresh pages."""
    result = await _call_episode_service("POST", "/api/cache/clear")

    if "error" in result:
        return _format_error(result)

    return result.get("message", "Cache cleared.")


async def service_stats() -> str:
    """Return browser pool and cache statistics as JSON."""
    pool = await _call_episode_service("GET", "/api/pool/stats")
    if "error" in pool:
        return _format_error(pool)

    cache = await _call_episode_service("GET", "/api/cache/stats")
    if "error" in cache:
        return _format_error(cache)

    return json.dumps({"browserPool": pool, "cache": cache}, indent=2)
