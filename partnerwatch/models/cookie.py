"""Pydantic model for a persisted authentication cookie."""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import BaseModel


class CookieRecord(BaseModel):
    """One cookie as written to the on-disk cookie jar."""

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expiry: Optional[float] = None
    http_only: bool = False
    secure: bool = False
    same_site: Optional[str] = None

    @classmethod
    def from_playwright(cls, cookie: dict) -> CookieRecord:
        """Build a record from a Playwright ``context.cookies()`` entry."""
        expires = cookie.get("expires")
        return cls(
            name=cookie["name"],
            value=cookie["value"],
            domain=cookie.get("domain", ""),
            path=cookie.get("path", "/"),
            # Playwright uses -1 for session cookies
            expiry=expires if expires is not None and expires >= 0 else None,
            http_only=cookie.get("httpOnly", False),
            secure=cookie.get("secure", False),
            same_site=cookie.get("sameSite"),
        )

    def to_playwright(self) -> dict:
        """Shape expected by Playwright ``context.add_cookies()``."""
        cookie = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path or "/",
            "httpOnly": self.http_only,
            "secure": self.secure,
        }
        if self.expiry is not None:
            cookie["expires"] = self.expiry
        if self.same_site in ("Strict", "Lax", "None"):
            cookie["sameSite"] = self.same_site
        return cookie


def to_httpx_cookies(records: list[CookieRecord]) -> httpx.Cookies:
    """Load records into an httpx cookie jar, keeping domain and path."""
    jar = httpx.Cookies()
    for record in records:
        jar.set(record.name, record.value, domain=record.domain, path=record.path or "/")
    return jar
