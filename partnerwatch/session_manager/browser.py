"""Camoufox browser automation for the interactive portal login."""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Optional

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BROWSER_HEADLESS, BROWSER_TIMEOUT
from ..constants import PORTAL_LOGIN_URL, SELECTORS
from ..models.cookie import CookieRecord
from .errors import LoginRejected, NetworkFailure
from .guard import detect_auth_code_prompt, detect_login_error, detect_login_page

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:135.0) "
    "Gecko/20100101 Firefox/135.0"
)


class LoginStep(str, Enum):
    AUTHENTICATED = "authenticated"
    AUTH_CODE_REQUIRED = "auth_code_required"


class BrowserSession:
    """Drives the portal's sign-in form in a Camoufox browser."""

    def __init__(self, headless: Optional[bool] = None, timeout_ms: int = BROWSER_TIMEOUT):
        self._headless = BROWSER_HEADLESS if headless is None else headless
        self._timeout_ms = timeout_ms
        self._camoufox = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._user_agent: str = ""

    @property
    def is_running(self) -> bool:
        return self._page is not None

    @property
    def user_agent(self) -> str:
        return self._user_agent or DEFAULT_USER_AGENT

    async def start(self, cookies: list[CookieRecord]):
        """Launch the browser and preload the saved cookies."""
        if self.is_running:
            return

        logger.info(f"Launching Camoufox (headless={self._headless})...")
        try:
            self._camoufox = AsyncCamoufox(
                headless=self._headless,
                humanize=True,
                i_know_what_im_doing=True,
            )
            self._browser = await self._camoufox.__aenter__()
            self._context = await self._browser.new_context(
                viewport={"width": 1366, "height": 768},
            )
            if cookies:
                await self._context.add_cookies([c.to_playwright() for c in cookies])
                logger.info(f"Applied {len(cookies)} saved cookies to the browser context")
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self._timeout_ms)
        except PlaywrightError as e:
            await self.stop()
            raise NetworkFailure(f"Failed to start browser: {e}") from e

    async def open_login(self) -> bool:
        """Navigate to the sign-in page.

        Returns:
            True if the sign-in form is shown, False if the browser's
            cookies already carry an authenticated session.
        """
        self._require_running()
        logger.info(f"Navigating to {PORTAL_LOGIN_URL}")
        try:
            await self._page.goto(PORTAL_LOGIN_URL, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise NetworkFailure(f"Could not open login page: {e}") from e

        try:
            await self._page.wait_for_selector(SELECTORS["login_username"], timeout=self._timeout_ms)
        except PlaywrightTimeoutError:
            logger.info(f"No login form on {self._page.url}, already logged in")
            return False
        except PlaywrightError as e:
            raise NetworkFailure(f"Login page failed while waiting for the form: {e}") from e
        return True

    async def submit_credentials(self, username: str, password: str) -> LoginStep:
        """Fill in and submit the sign-in form."""
        self._require_running()
        try:
            await self._page.fill(SELECTORS["login_username"], username)
            await self._page.fill(SELECTORS["login_password"], password)
            await self._page.press(SELECTORS["login_password"], "Enter")
        except PlaywrightError as e:
            raise NetworkFailure(f"Could not submit credentials: {e}") from e

        try:
            await self._page.wait_for_selector(SELECTORS["auth_code"], state="visible", timeout=self._timeout_ms)
            logger.info("Steam Guard code requested")
            return LoginStep.AUTH_CODE_REQUIRED
        except PlaywrightTimeoutError:
            pass
        except PlaywrightError as e:
            raise NetworkFailure(f"Browser failed after submitting credentials: {e}") from e

        error = await detect_login_error(self._page)
        if error:
            raise LoginRejected(error)

        await self._wait_until_navigated()
        if await detect_login_page(self._page):
            raise LoginRejected("Still on the login page after submitting credentials.")
        return LoginStep.AUTHENTICATED

    async def submit_auth_code(self, code: str, device_name: str) -> bool:
        """Enter a Steam Guard code.

        Returns:
            True if the portal accepted the code, False if it asked again.
        """
        self._require_running()
        try:
            await self._page.fill(SELECTORS["auth_code"], code)
            await self._page.fill(SELECTORS["auth_friendly_name"], device_name)
            await self._page.click(SELECTORS["auth_submit"])
            logger.info("Submitted Steam Guard code")
        except PlaywrightError as e:
            raise NetworkFailure(f"Could not submit auth code: {e}") from e

        try:
            await self._page.click(SELECTORS["auth_success_continue"], timeout=self._timeout_ms)
        except PlaywrightTimeoutError:
            if await detect_auth_code_prompt(self._page):
                logger.warning("Steam Guard code was not accepted")
                return False
            raise NetworkFailure("Portal neither accepted nor rejected the auth code.")
        except PlaywrightError as e:
            raise NetworkFailure(f"Could not confirm auth code: {e}") from e

        await self._wait_until_navigated()
        return True

    async def cookies(self) -> list[CookieRecord]:
        """Harvest cookies and the user agent from the browser context."""
        self._require_running()
        try:
            raw = await self._context.cookies()
            self._user_agent = await self._page.evaluate("() => navigator.userAgent")
        except PlaywrightError as e:
            raise NetworkFailure(f"Could not read browser cookies: {e}") from e

        cookies = [CookieRecord.from_playwright(c) for c in raw]
        logger.info(f"Extracted {len(cookies)} cookies, UA: {self.user_agent[:60]}...")
        return cookies

    async def _wait_until_navigated(self):
        try:
            await self._page.wait_for_load_state("load", timeout=self._timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning(f"Page did not finish loading, continuing on {self._page.url}")
        except PlaywrightError as e:
            raise NetworkFailure(f"Browser failed while loading {self._page.url}: {e}") from e

    def _require_running(self):
        if not self.is_running:
            raise NetworkFailure("Browser is not running.")

    async def stop(self):
        """Close the browser; safe to call when it is not running."""
        if self._camoufox is None:
            return
        logger.info("Stopping browser session...")

        try:
            if self._context:
                await self._context.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing context: {e}")
        finally:
            self._context = None
            self._page = None

        try:
            await self._camoufox.__aexit__(None, None, None)
        except PlaywrightError as e:
            logger.warning(f"Error closing camoufox: {e}")
        finally:
            self._camoufox = None
            self._browser = None

        logger.info("Browser session stopped.")
