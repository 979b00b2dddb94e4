"""HTTP page reader that replays the browser's session cookies."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import httpx

from ..config import HTTP_TIMEOUT
from ..models.cookie import CookieRecord, to_httpx_cookies
from .errors import NetworkFailure, NotAuthenticated
from .guard import is_login_url, is_login_wall

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class PortalHttpReader:
    """Fetches authenticated portal pages with plain HTTP requests.

    Use as an async context manager; the underlying client lives for the
    duration of the block.
    """

    def __init__(
        self,
        cookies: list[CookieRecord],
        user_agent: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._cookies = cookies
        self._user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        logger.info(f"[READER] Initializing httpx client with {len(self._cookies)} cookies")
        self._client = httpx.AsyncClient(
            cookies=to_httpx_cookies(self._cookies),
            headers={
                "User-Agent": self._user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
            follow_redirects=True,
            timeout=HTTP_TIMEOUT,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def read(self, url: str) -> str:
        """Fetch a page, raising NotAuthenticated if the portal shows its login wall."""
        if self._client is None:
            raise RuntimeError("Reader used outside of its context manager.")

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Request to {url} failed: {e}") from e

        logger.info(
            f"[READER] status={response.status_code}, url={response.url}, "
            f"size={len(response.text)} chars"
        )

        if response.status_code in (401, 403) or is_login_url(str(response.url)):
            raise NotAuthenticated(f"Redirected to login while fetching {url}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkFailure(f"HTTP {e.response.status_code} for {url}") from e

        if is_login_wall(response.text):
            raise NotAuthenticated(f"Login form served at {url}")
        return response.text

    async def probe(self, url: str) -> bool:
        """True if ``url`` is served without a login wall."""
        try:
            await self.read(url)
        except NotAuthenticated as e:
            logger.info(f"[READER] Probe failed: {e}")
            return False
        return True

    async def get(self, url: str) -> int:
        """Plain GET that ignores the body; used for the best-effort logout."""
        if self._client is None:
            raise RuntimeError("Reader used outside of its context manager.")
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Request to {url} failed: {e}") from e
        return response.status_code
