"""Pydantic models for extracted portal metrics and poll results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StatsSnapshot(BaseModel):
    """Lifetime metrics from the app details page.

    Value equality over every field is what change detection compares.
    """

    model_config = ConfigDict(frozen=True)

    # Revenue, formatted as the portal shows it
    net_revenue: str
    gross_revenue: str

    # Units
    units_sold: int
    units_returned: int
    return_rate: Optional[str] = None  # None when no units were sold

    # Players
    current_players: int
    daily_active_users: int
    lifetime_unique_users: int
    wishlist_count: int

    def render(self) -> str:
        """One ``field: value`` line per metric, in declaration order."""
        lines = []
        for name, value in self.model_dump().items():
            if value is None:
                value = "unavailable"
            lines.append(f"{name}: {value}")
        return "\n".join(lines) + "\n"


class OutcomeKind(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"


class PollOutcome(BaseModel):
    """Result of one poll tick."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: OutcomeKind
    previous: Optional[StatsSnapshot] = None
    current: Optional[StatsSnapshot] = None
    error: Optional[Exception] = None
    checked_at: str = Field(
        default_factory=lambda: datetime.utcnow().isoformat()
    )

    @classmethod
    def unchanged(cls, snapshot: StatsSnapshot) -> PollOutcome:
        return cls(kind=OutcomeKind.UNCHANGED, previous=snapshot, current=snapshot)

    @classmethod
    def changed(cls, old: Optional[StatsSnapshot], new: StatsSnapshot) -> PollOutcome:
        return cls(kind=OutcomeKind.CHANGED, previous=old, current=new)

    @classmethod
    def failed(cls, error: Exception) -> PollOutcome:
        return cls(kind=OutcomeKind.FAILED, error=error)


class SnapshotRecord(BaseModel):
    """A snapshot as stored in the history table."""

    id: int
    fetched_at: str
    snapshot: StatsSnapshot
