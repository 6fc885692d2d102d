"""UTC-everywhere time handling.

Timestamps are stored and compared in UTC. Calendar dates (issue, due,
run dates) are UTC calendar days, so "today" means today_utc() everywhere.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Current UTC calendar date. The reference "today" for due dates and schedules."""
    return now_utc().date()


def days_ago(days: int) -> datetime:
    """UTC timestamp a whole number of days before now. Used for cooldown windows."""
    return now_utc() - timedelta(days=days)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """
    Convert UTC datetime to local timezone for display.

    Only used when rendering timelines for humans.

    Raises:
        ValueError: If datetime is naive or timezone name is invalid
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime. Datetime must be timezone-aware."
        )

    try:
        local_tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")

    return dt.astimezone(local_tz)


def parse_date(value: str) -> date:
    """
    Parse an ISO calendar date (YYYY-MM-DD).

    Raises ValueError on anything else.
    """
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD.")
