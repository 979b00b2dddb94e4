"""Session Manager HTTP service.

Runs as a lightweight local web server that owns the single portal
Session and the background stats poller. The MCP server and any other
command surface talk to it over HTTP.

Endpoints:
    POST /login            - Log in (cookies first, then the sign-in form)
    POST /auth-code        - Supply a Steam Guard code for a pending login
    POST /logout           - Drop the session and the saved cookies
    GET  /status           - Session and poller state
    GET  /stats            - Fetch stats once (does not affect polling)
    POST /polling/start    - Start change-detection polling
    POST /polling/stop     - Stop polling
    GET  /history          - Recorded snapshot changes
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import aiosqlite
from aiohttp import web

from ..config import (
    AUTH_CODE_TIMEOUT,
    COOKIES_PATH,
    DB_PATH,
    NOTIFY_WEBHOOK_URL,
    POLL_INTERVAL_SECONDS,
    PORTAL_PASSWORD,
    PORTAL_USERNAME,
    SESSION_MANAGER_HOST,
    SESSION_MANAGER_PORT,
    STATS_URL,
    ensure_dirs,
)
from ..database.models import initialize_db
from ..database.repository import SnapshotRepository
from ..models.session import Credentials, LoginResult, SessionState, SessionStatus
from .cookies import CookieStore
from .errors import PortalError
from .notifier import WebhookNotifier
from .parser import parse_stats
from .poller import StatsPoller
from .session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class SessionManager:
    """Wires the session, poller, notifier, and snapshot history together."""

    def __init__(
        self,
        session: Optional[Session] = None,
        notifier: Optional[WebhookNotifier] = None,
        stats_url: str = STATS_URL,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        db_path: str = str(DB_PATH),
    ):
        self.session = session or Session(
            Credentials(username=PORTAL_USERNAME, password=PORTAL_PASSWORD),
            CookieStore(COOKIES_PATH),
            auth_code_timeout=AUTH_CODE_TIMEOUT,
        )
        self.notifier = notifier or WebhookNotifier(NOTIFY_WEBHOOK_URL)
        self.stats_url = stats_url
        self.poll_interval = poll_interval
        self._db_path = db_path
        self.db: aiosqlite.Connection | None = None
        self.repo: SnapshotRepository | None = None
        self.poller: StatsPoller | None = None

    @property
    def polling_enabled(self) -> bool:
        return self.poll_interval > 0 and self.notifier.enabled

    async def setup(self):
        """Open the history database and build the poller."""
        if self._db_path != ":memory:":
            ensure_dirs()
        self.db = await aiosqlite.connect(self._db_path)
        self.db.row_factory = aiosqlite.Row
        await initialize_db(self.db)
        self.repo = SnapshotRepository(self.db)
        self.poller = StatsPoller(
            self.session,
            self.notifier.send,
            stats_url=self.stats_url,
            interval=self.poll_interval,
            repository=self.repo,
        )

    async def cleanup(self):
        """Clean up resources."""
        if self.poller:
            await self.poller.stop()
        await self.session.close()
        if self.db:
            await self.db.close()

    async def status(self) -> SessionStatus:
        poller = self.poller
        outcome = poller.last_outcome if poller else None
        return SessionStatus(
            state=self.session.state,
            cookie_count=len(self.session.cookies),
            login_in_progress=self.session.login_in_progress,
            polling=bool(poller and poller.is_running),
            polling_enabled=self.polling_enabled,
            last_poll_time=outcome.checked_at if outcome else None,
            last_change_time=poller.last_change_time if poller else None,
            snapshots_recorded=await self.repo.count() if self.repo else 0,
            last_error=str(outcome.error) if outcome and outcome.error else self.session.last_error,
        )


# ── Middleware ───────────────────────────────────────────────────────────────


@web.middleware
async def portal_error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render PortalError as JSON with the error's status code."""
    try:
        return await handler(request)
    except PortalError as e:
        logger.warning(f"{request.method} {request.path} failed: {type(e).__name__}: {e}")
        return web.json_response(
            {"error": str(e), "kind": type(e).__name__},
            status=e.status_code,
        )


async def _read_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="Request body must be JSON.")
    return body if isinstance(body, dict) else {}


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_login(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    body = await _read_body(request)

    if body.get("wait", False):
        result = await mgr.session.login_and_wait()
    else:
        result = await mgr.session.login()

    if result is LoginResult.AUTH_CODE_NEEDED:
        message = (
            "Steam Guard code required. Supply it within "
            f"{mgr.session.auth_code_timeout:g} seconds."
        )
    else:
        message = "Login successful."
    return web.json_response({"state": mgr.session.state.value, "message": message})


async def handle_auth_code(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    body = await _read_body(request)
    code = body.get("code")
    if not isinstance(code, str):
        code = ""

    await mgr.session.supply_auth_code(code)
    return web.json_response({"state": mgr.session.state.value, "message": "Login successful."})


async def handle_logout(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    await mgr.session.logout()
    return web.json_response(
        {"state": SessionState.LOGGED_OUT.value, "message": "Logout successful."}
    )


async def handle_status(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    status = await mgr.status()
    return web.json_response(status.model_dump(mode="json"))


async def handle_stats(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    snapshot = await mgr.session.fetch(mgr.stats_url, parse_stats)
    return web.json_response({"stats": snapshot.model_dump(), "text": snapshot.render()})


async def handle_polling_start(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]

    if not mgr.polling_enabled:
        return web.json_response(
            {
                "started": False,
                "message": "Polling is disabled: set POLL_INTERVAL_SECONDS and NOTIFY_WEBHOOK_URL.",
            },
            status=400,
        )

    if mgr.poller.start():
        return web.json_response({"started": True, "message": "Polling started!"})
    return web.json_response({"started": False, "message": "Already started!"})


async def handle_polling_stop(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    was_running = mgr.poller.is_running
    await mgr.poller.stop()
    message = "Polling stopped." if was_running else "Polling was not running."
    return web.json_response({"stopped": was_running, "message": message})


async def handle_history(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        limit = int(request.query.get("limit", "20"))
    except ValueError:
        return web.json_response({"error": "limit must be an integer."}, status=400)

    records = await mgr.repo.list_recent(limit=max(1, min(limit, 500)))
    return web.json_response(
        {"snapshots": [r.model_dump() for r in records], "count": len(records)}
    )


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(manager: Optional[SessionManager] = None) -> web.Application:
    app = web.Application(middlewares=[portal_error_middleware])

    async def on_startup(app: web.Application):
        mgr = manager or SessionManager()
        await mgr.setup()
        app["manager"] = mgr
        logger.info(f"Session Manager started on {SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}")

    async def on_cleanup(app: web.Application):
        mgr: SessionManager = app["manager"]
        await mgr.cleanup()
        logger.info("Session Manager stopped.")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post("/login", handle_login)
    app.router.add_post("/auth-code", handle_auth_code)
    app.router.add_post("/logout", handle_logout)
    app.router.add_get("/status", handle_status)
    app.router.add_get("/stats", handle_stats)
    app.router.add_post("/polling/start", handle_polling_start)
    app.router.add_post("/polling/stop", handle_polling_stop)
    app.router.add_get("/history", handle_history)

    return app


def main():
    """Run the session manager as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=SESSION_MANAGER_HOST, port=SESSION_MANAGER_PORT)


if __name__ == "__main__":
    main()
