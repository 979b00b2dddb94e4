"""Cookie jar persistence: a flat JSON list of cookie records."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ..models.cookie import CookieRecord
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_COOKIE_LIST = TypeAdapter(list[CookieRecord])


class CookieStore:
    """Loads and saves the cookie jar at a fixed path."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[CookieRecord]:
        """Return the saved cookies, or an empty list if none were saved yet."""
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            logger.info(f"No cookie file at {self._path}, starting with an empty jar.")
            return []
        except OSError as e:
            raise PersistenceFailure(f"Could not read cookie file {self._path}: {e}") from e

        try:
            cookies = _COOKIE_LIST.validate_json(raw)
        except ValidationError as e:
            raise PersistenceFailure(f"Cookie file {self._path} is not a valid cookie list: {e}") from e

        logger.info(f"Loaded {len(cookies)} cookies from {self._path}")
        return cookies

    def save(self, cookies: list[CookieRecord]):
        """Overwrite the cookie file in one step (temp file + rename)."""
        data = _COOKIE_LIST.dump_json(cookies, indent=2)
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, self._path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceFailure(f"Could not write cookie file {self._path}: {e}") from e

        logger.info(f"Saved {len(cookies)} cookies to {self._path}")

    def clear(self):
        """Remove the cookie file if present."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"Could not remove cookie file {self._path}: {e}") from e
