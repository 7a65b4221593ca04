"""
Civil-date helpers.

Every stored and queried date is a civil date in the configured timezone
(Asia/Seoul by default), so a run started at 00:30 KST and one started at
23:30 KST agree on which day they collect.
"""

from __future__ import annotations

from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from config import get_settings

# Schedule rows label days the way the academy's timetable does (Monday first).
DAY_LABELS = ("월", "화", "수", "목", "금", "토", "일")


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def local_zone() -> ZoneInfo:
    """Return the configured civil-date timezone."""
    return _zone(get_settings().timezone)


def today() -> date:
    """Current civil date in the configured timezone."""
    return datetime.now(local_zone()).date()


def parse_date(value: str | date | None) -> date:
    """
    Parse a YYYY-MM-DD request value, defaulting to today.

    Raises:
        ValueError: If the string is not an ISO calendar date
    """
    if value is None or value == "":
        return today()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def civil_date_of(timestamp: str | None) -> date | None:
    """
    Civil date of an upstream timestamp.

    Offset-aware timestamps are converted into the configured zone first;
    naive ones are already local and only their date part is used.
    """
    if not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        try:
            return date.fromisoformat(timestamp[:10])
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(local_zone())
    return parsed.date()


def day_label(day: date) -> str:
    """Schedule label for the weekday of a civil date."""
    return DAY_LABELS[day.weekday()]
