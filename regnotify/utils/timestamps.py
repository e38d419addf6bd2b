"""Timestamp utilities for UTC handling and calendar-day arithmetic.

Storage and queue horizons are always UTC. Plate rules compare calendar dates
in the dealership's local time zone (midnight boundaries), so "today" is
resolved separately from "now".
"""

import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Example:
        >>> utc_now().tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return a tzinfo for an IANA name, or UTC when no name is given."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def local_today(tz: tzinfo, now: Optional[datetime] = None) -> date:
    """Calendar date at local midnight granularity.

    Args:
        tz: Local time zone of the dealership
        now: Reference instant (defaults to utc_now())

    Returns:
        The local calendar date containing ``now``
    """
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference.astimezone(tz).date()


def days_overdue(expected: date, today: date) -> int:
    """Whole days elapsed since ``expected`` (floor of the difference).

    Example:
        >>> days_overdue(date(2025, 3, 1), date(2025, 3, 4))
        3
    """
    return (today - expected).days


def days_until(target: date, today: date) -> int:
    """Whole days remaining until ``target`` (ceiling, may be negative).

    Example:
        >>> days_until(date(2025, 3, 8), date(2025, 3, 1))
        7
        >>> days_until(date(2025, 2, 27), date(2025, 3, 1))
        -2
    """
    return math.ceil((target - today) / timedelta(days=1))


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as ISO 8601 in UTC without microseconds.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00Z'
    """
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
