"""MCP Server entry point for the partner portal stats watcher.

Exposes 8 tools via the Model Context Protocol:
- Session management: login, submit_auth_code, logout, session_status
- Stats: get_stats, start_polling, stop_polling, snapshot_history

The Session Manager HTTP service (aiohttp on localhost:8025) is auto-started
as part of the MCP server lifecycle, so no separate process is needed.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, ensure_dirs
from .tools.session_tools import login, logout, session_status, submit_auth_code
from .tools.stats_tools import get_stats, snapshot_history, start_polling, stop_polling

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("partnerwatch")

# Ensure data directories exist
ensure_dirs()


# ── Lifespan: auto-start Session Manager ─────────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the Session Manager HTTP service alongside the MCP server."""
    from .session_manager.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT)
    managed = False
    try:
        await site.start()
        logger.info(
            "Session Manager auto-started on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        managed = True
    except OSError:
        # Port already in use, assume Session Manager was started manually
        logger.info(
            "Session Manager already running on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Session Manager stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "partnerwatch",
    lifespan=lifespan,
    instructions=(
        "Steam partner portal stats watcher. "
        "The Session Manager starts automatically with this server. "
        "Call session_status to see whether the portal session is logged in. "
        "If not, call login; if it reports that a Steam Guard code is required, "
        "ask the user for the code and pass it to submit_auth_code. "
        "Use get_stats for a one-off reading and start_polling to have "
        "changes posted to the configured webhook."
    ),
)


# ── Session Management Tools ─────────────────────────────────────────────────


@mcp.tool()
async def tool_login() -> str:
    """Log in to the partner portal.

    Reuses saved cookies when they are still valid; otherwise submits the
    configured credentials. May report that a Steam Guard code is needed.
    """
    return await login()


@mcp.tool()
async def tool_submit_auth_code(code: str) -> str:
    """Complete a pending login with a Steam Guard code.

    Args:
        code: Code from the Steam Guard email or authenticator app.
    """
    return await submit_auth_code(code)


@mcp.tool()
async def tool_logout() -> str:
    """Log out of the portal and delete the saved cookies."""
    return await logout()


@mcp.tool()
async def tool_session_status() -> str:
    """Check login state and whether change polling is running."""
    return await session_status()


# ── Stats Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
async def tool_get_stats() -> str:
    """Fetch current lifetime stats (revenue, units, players, wishlists)."""
    return await get_stats()


@mcp.tool()
async def tool_start_polling() -> str:
    """Start posting stats changes to the webhook on a fixed interval."""
    return await start_polling()


@mcp.tool()
async def tool_stop_polling() -> str:
    """Stop background stats polling."""
    return await stop_polling()


@mcp.tool()
async def tool_snapshot_history(limit: int = 10) -> str:
    """Show recorded stats changes, newest first.

    Args:
        limit: Number of snapshots to show (default 10).
    """
    return await snapshot_history(limit)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting partnerwatch MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
