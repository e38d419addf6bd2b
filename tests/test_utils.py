"""Tests for timestamp and phone utilities."""

from datetime import date, datetime, timedelta, timezone

import pytest

from regnotify.utils.phone import normalize_phone
from regnotify.utils.timestamps import (
    days_overdue,
    days_until,
    ensure_utc,
    format_timestamp,
    local_today,
    resolve_timezone,
    utc_now,
)


class TestTimestamps:
    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo == timezone.utc

    def test_ensure_utc_naive_and_offset(self):
        naive = datetime(2025, 11, 4, 12, 0)
        assert ensure_utc(naive) == datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)

        offset = datetime(2025, 11, 4, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert ensure_utc(offset) == datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)
        assert ensure_utc(None) is None

    def test_local_today_uses_zone(self):
        # 03:00 UTC is still the previous evening six hours west
        now = datetime(2025, 3, 2, 3, 0, tzinfo=timezone.utc)
        west = timezone(timedelta(hours=-6))

        assert local_today(timezone.utc, now) == date(2025, 3, 2)
        assert local_today(west, now) == date(2025, 3, 1)

    def test_resolve_timezone_defaults_to_utc(self):
        assert resolve_timezone(None) is timezone.utc
        assert resolve_timezone("UTC") is timezone.utc

    def test_day_arithmetic(self):
        today = date(2025, 3, 10)
        assert days_overdue(date(2025, 3, 7), today) == 3
        assert days_until(date(2025, 3, 17), today) == 7
        assert days_until(date(2025, 3, 8), today) == -2
        assert days_until(today, today) == 0

    def test_format_timestamp(self):
        dt = datetime(2025, 11, 4, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2025-11-04T12:00:00Z"


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("8325551234", "+18325551234"),
            ("(832) 555-1234", "+18325551234"),
            ("1-832-555-1234", "+18325551234"),
            ("+18325551234", "+18325551234"),
            ("+44 20 7946 0958", "+442079460958"),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "555-1234", "28325551234"])
    def test_rejects(self, raw):
        assert normalize_phone(raw) is None
