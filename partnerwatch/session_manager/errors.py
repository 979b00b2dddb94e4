"""Typed errors raised by the session, readers, extractor, and cookie store.

Each error carries the HTTP status the session manager answers with.
"""

from __future__ import annotations


class PortalError(RuntimeError):
    status_code = 500


class NotAuthenticated(PortalError):
    """The portal answered with a login wall."""

    status_code = 401


class LoginRejected(NotAuthenticated):
    """The portal refused the submitted credentials."""


class AuthCodeNeeded(PortalError):
    """A Steam Guard code must be supplied before the session can be used."""

    status_code = 401


class AuthCodeRejected(PortalError):
    status_code = 400


class NoAuthCodeProvided(PortalError):
    """Nobody supplied an auth code before the login attempt expired."""

    status_code = 408


class NetworkFailure(PortalError):
    status_code = 502


class MalformedPage(PortalError):
    """Expected page structure is missing or a value does not parse."""

    status_code = 502


class AlreadyInProgress(PortalError):
    status_code = 409


class PersistenceFailure(PortalError):
    """Reading or writing the cookie file failed."""
