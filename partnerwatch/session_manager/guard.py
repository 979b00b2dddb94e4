"""Login wall and Steam Guard detection for fetched pages and live browser tabs."""

from __future__ import annotations

import logging
import sys

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..constants import LOGIN_ERROR_MESSAGES, LOGIN_PAGE_MARKERS, LOGIN_URL_MARKERS, SELECTORS

logger = logging.getLogger(__name__)
# MCP servers MUST NOT write to stdout
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def is_login_url(url: str) -> bool:
    return any(marker in url for marker in LOGIN_URL_MARKERS)


def is_login_wall(html: str, url: str = "") -> bool:
    """True when a fetched page is the portal's sign-in form instead of content."""
    if url and is_login_url(url):
        return True
    return any(marker in html for marker in LOGIN_PAGE_MARKERS)


def find_login_error(html: str) -> str | None:
    """Return the portal's login error message if the page shows one."""
    for message in LOGIN_ERROR_MESSAGES:
        if message in html:
            return message
    return None


async def detect_login_page(page: Page) -> bool:
    """Check if the tab is showing the sign-in form."""
    if is_login_url(page.url):
        return True
    try:
        return await page.query_selector(SELECTORS["login_username"]) is not None
    except PlaywrightError:
        return False


async def detect_auth_code_prompt(page: Page) -> bool:
    """Check if Steam Guard is asking for a code."""
    try:
        element = await page.query_selector(SELECTORS["auth_code"])
        return element is not None and await element.is_visible()
    except PlaywrightError:
        return False


async def detect_login_error(page: Page) -> str | None:
    """Return the visible login error message, if any."""
    try:
        element = await page.query_selector(SELECTORS["login_error"])
        shown = (await element.inner_text()).strip() if element else ""
        content = await page.content()
    except PlaywrightError:
        return None
    message = find_login_error(content) or shown or None
    if message:
        logger.info(f"Login error shown: {message}")
    return message
