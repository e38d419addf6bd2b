"""Utility functions for time handling and phone normalization."""

from .phone import normalize_phone
from .timestamps import (
    days_overdue,
    days_until,
    ensure_utc,
    format_timestamp,
    local_today,
    resolve_timezone,
    utc_now,
)

__all__ = [
    # Timestamps
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "local_today",
    "resolve_timezone",
    "days_overdue",
    "days_until",
    # Phone
    "normalize_phone",
]
