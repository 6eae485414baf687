"""MCP server entry point for the poetry episodes service.

Exposes 3 tools via the Model Context Protocol:
- get_poetry_episodes: today's Poetry Foundation poems with audio
- clear_episode_cache: force the next fetch to scrape fresh pages
- service_stats: browser pool and cache statistics

The episode HTTP service (aiohttp) is started as part of the MCP server
lifecycle unless one is already listening on the configured port.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import LOG_LEVEL, SERVICE_HOST, SERVICE_PORT
from .tools.episode_tools import (
    clear_episode_cache,
    get_poetry_episodes,
    service_is_up,
    service_stats,
)

# stdout is reserved for MCP JSON-RPC
logging.basicConfig(
    stream=sys.stderr,
    level=LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("poetry-episodes")


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the episode HTTP service alongside the MCP server.

    A healthy service already on the port is reused and left running on exit.
    """
    if await service_is_up():
        logger.info("Reusing episode service on %s:%s", SERVICE_HOST, SERVICE_PORT)
        yield {"managed": False}
        return

    from .session_manager.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, SERVICE_HOST, SERVICE_PORT)
    managed = False
    try:
        await site.start()
        logger.info("Episode service auto-started on %s:%s", SERVICE_HOST, SERVICE_PORT)
        managed = True
    except OSError:
        # Port taken by something that did not answer the health check in time
        logger.warning(
            "Port %s:%s in use; using whatever is listening there", SERVICE_HOST, SERVICE_PORT
        )
        await runner.cleanup()

    try:
        yield {"managed": managed}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Episode service stopped.")


mcp = FastMCP(
    "poetry-episodes",
    lifespan=lifespan,
    instructions=(
        "Poetry Episodes - Today's Poetry Foundation poems that come with an audio reading. "
        "Use tool_get_poetry_episodes to list them; results are cached for a few minutes. "
        "Use tool_clear_episode_cache to force a fresh scrape and tool_service_stats "
        "to inspect the browser pool and cache."
    ),
)


@mcp.tool()
async def tool_get_poetry_episodes() -> str:
    """Get today's poem of the day and audio poem of the day.

    Returns title, description, date (when published) and the audio URL
    of every poem that has a recording. Served from cache when fresh.
    """
    return await get_poetry_episodes()


@mcp.tool()
async def tool_clear_episode_cache() -> str:
    """Clear cached episodes. The next fetch scrapes the pages again."""
    return await clear_episode_cache()


@mcp.tool()
async def tool_service_stats() -> str:
    """Show browser pool usage and cache statistics."""
    return await service_stats()


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting poetry episodes MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
