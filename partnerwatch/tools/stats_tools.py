"""MCP tools for reading portal stats and controlling change polling."""

from __future__ import annotations

from .session_tools import call_session_manager


async def get_stats() -> str:
    """Fetch the current lifetime stats once.

    Logs in automatically when saved cookies are still valid. Does not
    affect change detection.

    Returns:
        The stats, one metric per line.
    """
    result = await call_session_manager("GET", "/stats")

    if "error" in result:
        if result.get("kind") == "AuthCodeNeeded":
            return f"Error: {result['error']} Call login, then submit_auth_code."
        return f"Error: {result['error']}"

    return f"```\n{result.get('text', '')}```"


async def start_polling() -> str:
    """Start background change detection.

    Stats are re-fetched every POLL_INTERVAL_SECONDS and changes are posted
    to the configured webhook. Polling stops on the first failed fetch.

    Returns:
        Whether polling was started or was already running.
    """
    result = await call_session_manager("POST", "/polling/start")

    if "error" in result:
        return f"Error: {result['error']}"

    return result.get("message", "")


async def stop_polling() -> str:
    """Stop background change detection.

    Returns:
        Confirmation message.
    """
    result = await call_session_manager("POST", "/polling/stop")

    if "error" in result:
        return f"Error: {result['error']}"

    return result.get("message", "")


async def snapshot_history(limit: int = 10) -> str:
    """List recorded stats changes, newest first.

    Args:
        limit: Number of snapshots to return (default 10).

    Returns:
        One block per recorded snapshot.
    """
    result = await call_session_manager("GET", "/history", {"limit": limit})

    if "error" in result:
        return f"Error: {result['error']}"

    snapshots = result.get("snapshots", [])
    if not snapshots:
        return "No stats changes recorded yet."

    blocks = []
    for record in snapshots:
        lines = [f"#{record['id']} at {record['fetched_at']}"]
        for name, value in record["snapshot"].items():
            lines.append(f"  {name}: {value if value is not None else 'unavailable'}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
