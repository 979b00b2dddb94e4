"""Background change detection for portal stats.

Every tick fetches a fresh snapshot through the shared Session and compares
it with the last one seen. Changes are announced as a line diff; identical
snapshots are silent. The first failed fetch stops the loop for good:
a broken session stays quiet until someone logs in again and restarts
polling, instead of reporting the same error every interval.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
import sys
from contextlib import suppress
from typing import Awaitable, Callable, Optional

import aiosqlite

from ..config import POLL_INTERVAL_SECONDS, STATS_URL
from ..database.repository import SnapshotRepository
from ..models.stats import OutcomeKind, PollOutcome, StatsSnapshot
from .errors import PortalError
from .notifier import MAX_CONTENT_LENGTH
from .parser import parse_stats
from .session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

Notify = Callable[[str], Awaitable[bool]]
_CUT_MARKER = "\n...\n"


def format_change(old: Optional[StatsSnapshot], new: StatsSnapshot) -> str:
    """Render a snapshot change as a ``diff`` code block."""
    old_lines = old.render().splitlines(keepends=True) if old else []
    new_lines = new.render().splitlines(keepends=True)
    diff = "".join(
        line[0] + line[2:]
        for line in difflib.ndiff(old_lines, new_lines)
        if not line.startswith("?")
    )
    header, footer = "Stats changed: ```diff\n", "```"
    budget = MAX_CONTENT_LENGTH - len(header) - len(footer)
    if len(diff) > budget:
        # Cut inside the fence so the block stays closed
        diff = diff[: budget - len(_CUT_MARKER)] + _CUT_MARKER
    return f"{header}{diff}{footer}"


def format_failure(error: Exception) -> str:
    return f"Failed to get stats, polling stopped: {type(error).__name__}: {error}"


class StatsPoller:
    """Runs the fetch-compare-notify loop as a single asyncio task."""

    def __init__(
        self,
        session: Session,
        notify: Notify,
        stats_url: str = STATS_URL,
        interval: float = POLL_INTERVAL_SECONDS,
        extract: Callable[[str], StatsSnapshot] = parse_stats,
        repository: Optional[SnapshotRepository] = None,
    ):
        self._session = session
        self._notify = notify
        self._stats_url = stats_url
        self._interval = interval
        self._extract = extract
        self._repository = repository
        self._task: Optional[asyncio.Task] = None

        self.last_snapshot: Optional[StatsSnapshot] = None
        self.last_outcome: Optional[PollOutcome] = None
        self.last_change_time: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start polling in the background.

        Returns:
            False if the loop is already running, True if it was started.
        """
        if self.is_running:
            logger.info("Poller already started.")
            return False
        if self._interval <= 0:
            raise ValueError("Polling interval must be positive.")

        self._task = asyncio.create_task(self._run(), name="stats-poller")
        logger.info(f"Poller started, interval {self._interval:g}s")
        return True

    async def stop(self):
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def tick(self) -> PollOutcome:
        """Fetch once, compare, and notify. Fetch errors become a FAILED outcome."""
        try:
            snapshot = await self._session.fetch(self._stats_url, self._extract)
        except PortalError as e:
            logger.error(f"Failed to get stats: {e!r}")
            outcome = PollOutcome.failed(e)
            await self._send(format_failure(e))
            return outcome
        except Exception as e:
            logger.error(f"Unexpected error while getting stats: {e!r}", exc_info=True)
            outcome = PollOutcome.failed(e)
            await self._send(format_failure(e))
            return outcome

        if snapshot == self.last_snapshot:
            logger.info("Stats haven't changed.")
            return PollOutcome.unchanged(snapshot)

        outcome = PollOutcome.changed(self.last_snapshot, snapshot)
        self.last_snapshot = snapshot
        self.last_change_time = outcome.checked_at
        await self._record(snapshot, outcome.checked_at)
        await self._send(format_change(outcome.previous, snapshot))
        return outcome

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while True:
                delay = next_tick - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)

                outcome = await self.tick()
                self.last_outcome = outcome
                if outcome.kind is OutcomeKind.FAILED:
                    logger.error("Stopping poller after failed fetch.")
                    break

                # Missed ticks are skipped rather than run back to back
                next_tick = max(next_tick + self._interval, loop.time())
        finally:
            logger.info("Poller stopped.")

    async def _record(self, snapshot: StatsSnapshot, fetched_at: str):
        if self._repository is None:
            return
        try:
            await self._repository.record(snapshot, fetched_at)
        except aiosqlite.Error as e:
            logger.warning(f"Could not record snapshot history: {e}")

    async def _send(self, text: str):
        try:
            await self._notify(text)
        except Exception as e:
            logger.error(f"Notification sink raised: {e}", exc_info=True)
