"""Portal session: the login state machine guarding all portal access.

A Session is either logged out, parked on a Steam Guard prompt, or logged
in. Every operation that touches the portal runs under the session's lock,
so the background poller and interactive commands never interleave their
navigation. Waiting for a human to type an auth code does not hold the lock.

Login prefers the cheap path: saved cookies are replayed over plain HTTP
and, if the portal serves an authenticated page, no browser is started.
Only when that probe fails does the session drive the sign-in form in a
real browser, and it hands off to HTTP again as soon as login completes.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Callable, Optional, TypeVar

from ..config import AUTH_CODE_TIMEOUT, DEVICE_NAME
from ..constants import PORTAL_HOME_URL, PORTAL_LOGOUT_URL
from ..models.cookie import CookieRecord
from ..models.session import Credentials, LoginResult, SessionState
from .browser import DEFAULT_USER_AGENT, BrowserSession, LoginStep
from .cookies import CookieStore
from .errors import (
    AlreadyInProgress,
    AuthCodeNeeded,
    AuthCodeRejected,
    NetworkFailure,
    NoAuthCodeProvided,
    NotAuthenticated,
    PersistenceFailure,
    PortalError,
)
from .reader import PortalHttpReader

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

T = TypeVar("T")


def _consume_exception(future: asyncio.Future):
    # Nobody may be waiting on the outcome; keep asyncio from warning about it.
    if not future.cancelled():
        future.exception()


class Session:
    """Owns the login state, cookie jar, and (while logging in) the browser."""

    def __init__(
        self,
        credentials: Credentials,
        cookie_store: CookieStore,
        probe_url: str = PORTAL_HOME_URL,
        auth_code_timeout: float = AUTH_CODE_TIMEOUT,
        device_name: str = DEVICE_NAME,
        browser_factory: Callable[[], BrowserSession] = BrowserSession,
        reader_factory: Callable[[list[CookieRecord], str], PortalHttpReader] = PortalHttpReader,
    ):
        self._credentials = credentials
        self._cookie_store = cookie_store
        self._probe_url = probe_url
        self._auth_code_timeout = auth_code_timeout
        self._device_name = device_name
        self._browser_factory = browser_factory
        self._reader_factory = reader_factory

        self._lock = asyncio.Lock()
        self._state = SessionState.LOGGED_OUT
        self._cookies: list[CookieRecord] = []
        self._user_agent = DEFAULT_USER_AGENT
        self._browser: Optional[BrowserSession] = None
        self._login_active = False
        self._auth_code_future: Optional[asyncio.Future] = None
        self._auth_code_timer: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cookies(self) -> list[CookieRecord]:
        return list(self._cookies)

    @property
    def auth_code_timeout(self) -> float:
        return self._auth_code_timeout

    @property
    def login_in_progress(self) -> bool:
        return self._login_active or self._state is SessionState.AWAITING_AUTH_CODE

    def is_authenticated(self) -> bool:
        return self._state is SessionState.LOGGED_IN

    def locked(self) -> bool:
        return self._lock.locked()

    # ── Commands ─────────────────────────────────────────────────────────────

    async def login(self) -> LoginResult:
        """Log in, preferring saved cookies over the interactive form.

        Returns:
            SUCCESS once the portal serves an authenticated page, or
            AUTH_CODE_NEEDED when Steam Guard wants a code. In the latter
            case call supply_auth_code() before the auth code timeout.

        Raises:
            AlreadyInProgress: another login is running or awaiting a code.
        """
        if self.login_in_progress:
            raise AlreadyInProgress("Login already in progress.")

        self._login_active = True
        try:
            async with self._lock:
                if self._state is SessionState.AWAITING_AUTH_CODE:
                    raise AlreadyInProgress("Login already in progress.")
                return await self._login_locked()
        finally:
            self._login_active = False

    async def login_and_wait(self) -> LoginResult:
        """login(), then block until a pending auth code is accepted or times out."""
        result = await self.login()
        if result is LoginResult.AUTH_CODE_NEEDED:
            await self.wait_for_auth_code()
        return LoginResult.SUCCESS

    async def supply_auth_code(self, code: str):
        """Submit a Steam Guard code for the pending login.

        Raises:
            AuthCodeRejected: the code is malformed, nothing is waiting for
                one, or the portal refused it. A refused code leaves the
                login pending so the caller can try again.
        """
        code = code.strip()
        if not code or not code.isalnum():
            raise AuthCodeRejected(f"Malformed auth code: {code!r}")

        async with self._lock:
            if self._state is not SessionState.AWAITING_AUTH_CODE:
                raise AuthCodeRejected("No login is waiting for an auth code.")

            if not await self._browser.submit_auth_code(code, self._device_name):
                raise AuthCodeRejected("The portal rejected the auth code.")

            try:
                await self._finish_browser_login()
            except PortalError as e:
                await self._close_browser()
                self._state = SessionState.LOGGED_OUT
                self._resolve_auth_code(error=e)
                raise
            self._resolve_auth_code()
            logger.info("Auth code accepted, session is logged in.")

    async def wait_for_auth_code(self):
        """Wait for the pending login to finish.

        Raises:
            NoAuthCodeProvided: the code did not arrive in time, or the
                login was abandoned by logout/shutdown.
        """
        future = self._auth_code_future
        if future is None:
            if self._state is SessionState.LOGGED_IN:
                return
            raise NotAuthenticated("No login is waiting for an auth code.")
        await asyncio.shield(future)

    async def logout(self):
        """Drop the session locally and, best effort, on the portal."""
        async with self._lock:
            if self._cookies:
                try:
                    async with self._reader_factory(self._cookies, self._user_agent) as reader:
                        await reader.get(PORTAL_LOGOUT_URL)
                except NetworkFailure as e:
                    logger.warning(f"Remote logout failed, clearing local session anyway: {e}")

            await self._close_browser()
            self._cookies = []
            self._state = SessionState.LOGGED_OUT
            self._resolve_auth_code(error=NoAuthCodeProvided("Login abandoned by logout."))
            self._cookie_store.clear()
            logger.info("Logged out.")

    async def fetch(self, url: str, extract: Callable[[str], T]) -> T:
        """Read an authenticated page and run ``extract`` on its HTML.

        Logs in first when needed. The whole sequence holds the session
        lock, so callers never see another command's half-finished work.

        Raises:
            AuthCodeNeeded: logging in requires a Steam Guard code.
            NotAuthenticated: the portal served its login wall.
        """
        async with self._lock:
            await self._ensure_authenticated()
            try:
                async with self._reader_factory(self._cookies, self._user_agent) as reader:
                    html = await reader.read(url)
                return extract(html)
            except NotAuthenticated:
                logger.warning("Portal session expired.")
                self._state = SessionState.LOGGED_OUT
                raise

    async def close(self):
        """Release the browser and abort any pending auth code wait."""
        self._resolve_auth_code(error=NoAuthCodeProvided("Shutting down."))
        if self._state is SessionState.AWAITING_AUTH_CODE:
            self._state = SessionState.LOGGED_OUT
        await self._close_browser()

    # ── Internals (lock held) ────────────────────────────────────────────────

    async def _ensure_authenticated(self):
        if self._state is SessionState.LOGGED_IN:
            return
        if self._state is SessionState.AWAITING_AUTH_CODE:
            raise AuthCodeNeeded("Waiting for a Steam Guard code.")

        logger.info("Not logged in, attempting login before fetching.")
        if await self._login_locked() is LoginResult.AUTH_CODE_NEEDED:
            raise AuthCodeNeeded("Steam Guard code required to log in.")

    async def _login_locked(self) -> LoginResult:
        # The in-memory jar may be newer than the file if the last save failed
        if self._cookies and await self._probe():
            logger.info("In-memory cookies are still valid.")
            self._state = SessionState.LOGGED_IN
            return LoginResult.SUCCESS

        try:
            saved = self._cookie_store.load()
        except PersistenceFailure as e:
            logger.warning(f"Ignoring unreadable cookie file: {e}")
            self.last_error = str(e)
            saved = []

        if saved and saved != self._cookies:
            self._cookies = saved
            if await self._probe():
                logger.info("Saved cookies are still valid.")
                self._state = SessionState.LOGGED_IN
                return LoginResult.SUCCESS

        self._state = SessionState.LOGGED_OUT
        return await self._interactive_login()

    async def _interactive_login(self) -> LoginResult:
        logger.info("Starting interactive login.")
        self._browser = self._browser_factory()
        try:
            await self._browser.start(self._cookies)
            if await self._browser.open_login():
                step = await self._browser.submit_credentials(
                    self._credentials.username, self._credentials.password
                )
                if step is LoginStep.AUTH_CODE_REQUIRED:
                    self._start_auth_code_wait()
                    return LoginResult.AUTH_CODE_NEEDED
            await self._finish_browser_login()
            return LoginResult.SUCCESS
        finally:
            if self._state is not SessionState.AWAITING_AUTH_CODE:
                await self._close_browser()

    async def _finish_browser_login(self):
        self._cookies = await self._browser.cookies()
        self._user_agent = self._browser.user_agent
        await self._close_browser()

        if not await self._probe():
            self._state = SessionState.LOGGED_OUT
            raise NotAuthenticated("The portal did not accept the new session cookies.")

        self._state = SessionState.LOGGED_IN
        try:
            self._cookie_store.save(self._cookies)
        except PersistenceFailure as e:
            logger.warning(f"Logged in, but cookies were not saved: {e}")
            self.last_error = str(e)

    async def _probe(self) -> bool:
        async with self._reader_factory(self._cookies, self._user_agent) as reader:
            return await reader.probe(self._probe_url)

    async def _close_browser(self):
        browser, self._browser = self._browser, None
        if browser is not None:
            await browser.stop()

    # ── Auth code wait ───────────────────────────────────────────────────────

    def _start_auth_code_wait(self):
        self._state = SessionState.AWAITING_AUTH_CODE
        self._auth_code_future = asyncio.get_running_loop().create_future()
        self._auth_code_future.add_done_callback(_consume_exception)
        self._auth_code_timer = asyncio.create_task(self._expire_auth_code())
        logger.info(f"Waiting up to {self._auth_code_timeout:g}s for a Steam Guard code.")

    async def _expire_auth_code(self):
        await asyncio.sleep(self._auth_code_timeout)
        async with self._lock:
            if self._state is not SessionState.AWAITING_AUTH_CODE:
                return
            logger.warning("No auth code provided in time, abandoning login.")
            self._auth_code_timer = None
            await self._close_browser()
            self._state = SessionState.LOGGED_OUT
            self._resolve_auth_code(error=NoAuthCodeProvided("No auth code provided."))

    def _resolve_auth_code(self, error: Optional[Exception] = None):
        timer, self._auth_code_timer = self._auth_code_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        future, self._auth_code_future = self._auth_code_future, None
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)
