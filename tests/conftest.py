"""Shared fixtures: an in-memory fake of the portal, its browser, and its HTTP reader."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from partnerwatch.models.cookie import CookieRecord
from partnerwatch.models.session import Credentials
from partnerwatch.session_manager.browser import LoginStep
from partnerwatch.session_manager.cookies import CookieStore
from partnerwatch.session_manager.errors import LoginRejected, NotAuthenticated
from partnerwatch.session_manager.session import Session

STATS_URL = "https://partner.steampowered.com/app/details/1968950/"
SESSION_COOKIE = "steamLoginSecure"

DEFAULT_ROWS = {
    "Lifetime Steam revenue (gross)": "$12,345",
    "Lifetime Steam revenue (net)": "$10,001",
    "Lifetime Steam units": "1,000",
    "Lifetime units returned": "25",
    "Current players": "7",
    "Daily active users": "42",
    "Lifetime unique users": "950",
    "Wishlists": "100",
}


def stats_page(rows: Optional[dict] = None, **overrides) -> str:
    """Render an app details page with a lifetime summary table."""
    rows = dict(DEFAULT_ROWS if rows is None else rows)
    rows.update(overrides)
    body = "".join(
        f"<tr><td>{label}</td><td>\n  {value}\n</td></tr>" for label, value in rows.items()
    )
    return (
        "<html><body><div id=\"gameDataLeft\"><div class=\"lifetimeSummaryCtn\">"
        "<table><tbody><tr><th>Lifetime</th><th></th></tr>"
        f"{body}</tbody></table></div></div></body></html>"
    )


LOGIN_PAGE = (
    "<html><body><form id=\"loginForm\">"
    "<input id=\"username\" name=\"username\"><input id=\"password\" type=\"password\">"
    "</form></body></html>"
)


class FakePortal:
    """Remote state shared by the fake browser and the fake reader."""

    def __init__(self):
        self.token = "live-token"
        self.password = "hunter2"
        self.auth_code = "F7K2Q"
        self.require_auth_code = False
        self.browser_already_logged_in = False
        self.pages: dict[str, str] = {STATS_URL: stats_page()}
        self.read_error: Optional[Exception] = None
        self.read_gate: Optional[asyncio.Event] = None
        self.browser_error: Optional[Exception] = None

        self.reads = 0
        self.probes = 0
        self.remote_logouts = 0
        self.browser_starts = 0
        self.browser_stops = 0

    def session_cookie(self) -> CookieRecord:
        return CookieRecord(
            name=SESSION_COOKIE,
            value=self.token,
            domain="partner.steampowered.com",
            http_only=True,
            secure=True,
        )

    def accepts(self, cookies: list[CookieRecord]) -> bool:
        return any(c.name == SESSION_COOKIE and c.value == self.token for c in cookies)


class FakeReader:
    def __init__(self, portal: FakePortal, cookies: list[CookieRecord], user_agent: str):
        self._portal = portal
        self._cookies = cookies
        self.user_agent = user_agent

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None

    async def read(self, url: str) -> str:
        self._portal.reads += 1
        if self._portal.read_gate is not None:
            await self._portal.read_gate.wait()
        if self._portal.read_error is not None:
            raise self._portal.read_error
        if not self._portal.accepts(self._cookies):
            raise NotAuthenticated(f"Redirected to login while fetching {url}")
        return self._portal.pages.get(url, "<html><body>home</body></html>")

    async def probe(self, url: str) -> bool:
        self._portal.probes += 1
        try:
            await self.read(url)
        except NotAuthenticated:
            return False
        return True

    async def get(self, url: str) -> int:
        self._portal.remote_logouts += 1
        return 200


class FakeBrowser:
    def __init__(self, portal: FakePortal):
        self._portal = portal
        self.user_agent = "fake-agent/1.0"
        self.running = False

    async def start(self, cookies: list[CookieRecord]):
        self._portal.browser_starts += 1
        self.running = True

    async def open_login(self) -> bool:
        if self._portal.browser_error is not None:
            raise self._portal.browser_error
        return not self._portal.browser_already_logged_in

    async def submit_credentials(self, username: str, password: str) -> LoginStep:
        if password != self._portal.password:
            raise LoginRejected("The account name or password that you have entered is incorrect")
        if self._portal.require_auth_code:
            return LoginStep.AUTH_CODE_REQUIRED
        return LoginStep.AUTHENTICATED

    async def submit_auth_code(self, code: str, device_name: str) -> bool:
        return code == self._portal.auth_code

    async def cookies(self) -> list[CookieRecord]:
        return [self._portal.session_cookie()]

    async def stop(self):
        self.running = False
        self._portal.browser_stops += 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0):
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def portal() -> FakePortal:
    return FakePortal()


@pytest.fixture
def cookie_store(tmp_path) -> CookieStore:
    return CookieStore(tmp_path / "cookies.json")


@pytest.fixture
def make_session(portal, cookie_store):
    def factory(auth_code_timeout: float = 5.0) -> Session:
        return Session(
            Credentials(username="dev", password="hunter2"),
            cookie_store,
            probe_url="https://partner.steampowered.com/nav_games.php",
            auth_code_timeout=auth_code_timeout,
            device_name="test-device",
            browser_factory=lambda: FakeBrowser(portal),
            reader_factory=lambda cookies, user_agent: FakeReader(portal, cookies, user_agent),
        )

    return factory


@pytest.fixture
def session(make_session) -> Session:
    return make_session()
