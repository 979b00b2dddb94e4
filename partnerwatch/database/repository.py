"""Async repository for the snapshot history table."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Optional

import aiosqlite

from ..models.stats import SnapshotRecord, StatsSnapshot

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_COLUMNS = list(StatsSnapshot.model_fields)


class SnapshotRepository:
    """Stores every snapshot that differed from its predecessor."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def record(self, snapshot: StatsSnapshot, fetched_at: Optional[str] = None) -> int:
        """Insert a snapshot and return its row id."""
        fetched_at = fetched_at or datetime.utcnow().isoformat()
        data = snapshot.model_dump()
        columns = ", ".join(["fetched_at", *_COLUMNS])
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        cursor = await self._db.execute(
            f"INSERT INTO snapshots ({columns}) VALUES ({placeholders})",
            (fetched_at, *(data[c] for c in _COLUMNS)),
        )
        await self._db.commit()
        logger.info(f"Recorded snapshot #{cursor.lastrowid} at {fetched_at}")
        return cursor.lastrowid

    async def latest(self) -> Optional[SnapshotRecord]:
        records = await self.list_recent(limit=1)
        return records[0] if records else None

    async def list_recent(self, limit: int = 20) -> list[SnapshotRecord]:
        """Most recent snapshots first."""
        async with self._db.execute(
            "SELECT * FROM snapshots ORDER BY id DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_record(row, cursor.description) for row in rows]

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM snapshots") as cursor:
            return (await cursor.fetchone())[0]

    def _row_to_record(self, row: tuple, description) -> SnapshotRecord:
        """Convert a database row to a SnapshotRecord."""
        col_names = [d[0] for d in description]
        data = dict(zip(col_names, row))
        return SnapshotRecord(
            id=data.pop("id"),
            fetched_at=data.pop("fetched_at"),
            snapshot=StatsSnapshot(**data),
        )
