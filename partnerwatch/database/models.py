"""SQLite database schema and initialization."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fetched_at TEXT NOT NULL,
    net_revenue TEXT NOT NULL,
    gross_revenue TEXT NOT NULL,
    units_sold INTEGER NOT NULL,
    units_returned INTEGER NOT NULL,
    return_rate TEXT,
    current_players INTEGER NOT NULL,
    daily_active_users INTEGER NOT NULL,
    lifetime_unique_users INTEGER NOT NULL,
    wishlist_count INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_fetched ON snapshots(fetched_at);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
