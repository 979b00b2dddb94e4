"""Extract lifetime metrics from the portal's app details page.

The page carries a "lifetime summary" table with one metric per row:
a label cell followed by a value cell. Rows are matched by label, so
reordering on the portal side does not shift values between fields.

Numeric cells are parsed strictly: thousands separators are dropped and
what remains must be a signed integer. Anything else is a malformed page,
never a default value.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional

from bs4 import BeautifulSoup
from pydantic import ValidationError

from ..constants import INTEGER_FIELDS, SELECTORS, STATS_ROW_LABELS
from ..models.stats import StatsSnapshot
from .errors import MalformedPage, NotAuthenticated
from .guard import is_login_wall

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_SIGNED_INT = re.compile(r"[+-]?\d+")


# ── Utility Functions ────────────────────────────────────────────────────────


def _clean_text(text: str | None) -> str:
    """Strip whitespace and normalize text."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def parse_int(text: str) -> int:
    """Parse a displayed count like ``"12,345"`` or ``"-3"``."""
    cleaned = _clean_text(text).replace(",", "")
    if not _SIGNED_INT.fullmatch(cleaned):
        raise MalformedPage(f"Could not convert {text!r} to an integer")
    return int(cleaned)


def return_rate(units_returned: int, units_sold: int) -> Optional[str]:
    """Returned units as a percentage of units sold, or None when nothing sold."""
    if units_sold == 0:
        return None
    return f"{units_returned / units_sold * 100:.2f}%"


# ── Table Extraction ────────────────────────────────────────────────────────


def _field_for_label(label: str) -> Optional[str]:
    label = label.lower()
    for prefix, field in STATS_ROW_LABELS.items():
        if label.startswith(prefix):
            return field
    return None


def _extract_rows(soup: BeautifulSoup) -> dict[str, str]:
    """Map StatsSnapshot field names to the raw text of their value cells."""
    table = soup.select_one(SELECTORS["lifetime_summary"])
    if table is None:
        raise MalformedPage("Lifetime summary table not found")

    values: dict[str, str] = {}
    for row in table.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        field = _field_for_label(_clean_text(cells[0].get_text()))
        if field and field not in values:
            values[field] = _clean_text(cells[1].get_text())
    return values


def parse_stats(html: str) -> StatsSnapshot:
    """Build a StatsSnapshot from the app details page HTML.

    Raises:
        NotAuthenticated: the page is the sign-in form.
        MalformedPage: the summary table or one of its rows is missing,
            or a count does not parse.
    """
    if is_login_wall(html):
        raise NotAuthenticated("Stats page is behind the login wall")

    soup = BeautifulSoup(html, "html.parser")
    values = _extract_rows(soup)

    missing = sorted(set(STATS_ROW_LABELS.values()) - values.keys())
    if missing:
        raise MalformedPage(f"Missing stats rows: {', '.join(missing)}")

    data: dict[str, object] = {}
    for field, text in values.items():
        if field in INTEGER_FIELDS:
            data[field] = parse_int(text)
        else:
            if not text:
                raise MalformedPage(f"Empty value for {field}")
            data[field] = text

    data["return_rate"] = return_rate(data["units_returned"], data["units_sold"])

    try:
        snapshot = StatsSnapshot(**data)
    except ValidationError as e:
        raise MalformedPage(f"Stats failed validation: {e}") from e

    logger.info(
        f"Parsed stats: wishlists={snapshot.wishlist_count}, "
        f"players={snapshot.current_players}, net={snapshot.net_revenue}"
    )
    return snapshot
