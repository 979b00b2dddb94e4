"""Pydantic models for session state."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    AWAITING_AUTH_CODE = "awaiting_auth_code"
    LOGGED_IN = "logged_in"


class LoginResult(str, Enum):
    """Outcome of a login attempt that did not raise."""

    SUCCESS = "success"
    AUTH_CODE_NEEDED = "auth_code_needed"


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class SessionStatus(BaseModel):
    """Current state of the portal session and the poller."""

    state: SessionState = SessionState.LOGGED_OUT
    cookie_count: int = 0
    login_in_progress: bool = False
    polling: bool = False
    polling_enabled: bool = False
    last_poll_time: Optional[str] = None
    last_change_time: Optional[str] = None
    snapshots_recorded: int = 0
    last_error: Optional[str] = None
    message: str = ""
