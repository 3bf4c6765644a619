"""Tests for zone resolution and hour/day helpers in datetime_utils."""

from datetime import UTC, date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from courier.core.datetime_utils import (
    InvalidZoneError,
    is_valid_timezone,
    local_day,
    local_hour,
    next_day_boundary,
    next_hour_boundary,
    parse_utc_offset,
    resolve_zone,
    to_naive_utc,
)


class TestParseUtcOffset:
    """Tests for parse_utc_offset."""

    def test_colon_offset(self):
        """Should parse +HH:MM offsets."""
        assert parse_utc_offset("+02:00") == timezone(timedelta(hours=2))
        assert parse_utc_offset("-05:30") == timezone(-timedelta(hours=5, minutes=30))

    def test_prefixed_offset(self):
        """Should accept UTC/GMT prefixes and bare hours."""
        assert parse_utc_offset("UTC+2") == timezone(timedelta(hours=2))
        assert parse_utc_offset("gmt-0530") == timezone(-timedelta(hours=5, minutes=30))

    def test_rejects_non_offsets(self):
        """Should return None for anything that is not an offset."""
        assert parse_utc_offset("Africa/Johannesburg") is None
        assert parse_utc_offset("+25:00") is None
        assert parse_utc_offset("+02:75") is None


class TestResolveZone:
    """Tests for resolve_zone."""

    def test_iana_name(self):
        """Should resolve IANA identifiers to ZoneInfo."""
        assert resolve_zone("Africa/Johannesburg") == ZoneInfo("Africa/Johannesburg")

    def test_offset(self):
        """Should resolve fixed offsets."""
        assert resolve_zone("+02:00") == timezone(timedelta(hours=2))

    def test_utc_aliases(self):
        """Should map UTC/GMT/Z to UTC."""
        for value in ("UTC", "gmt", "Z"):
            assert resolve_zone(value) is UTC

    def test_empty_uses_default(self):
        """Should fall back to the deployment default for empty values."""
        assert resolve_zone("", "+02:00") == timezone(timedelta(hours=2))
        assert resolve_zone(None, "+02:00") == timezone(timedelta(hours=2))

    def test_invalid_zone_raises(self):
        """Should raise InvalidZoneError for unknown zones."""
        with pytest.raises(InvalidZoneError):
            resolve_zone("Mars/Olympus_Mons")
        with pytest.raises(InvalidZoneError):
            resolve_zone("sometime")

    def test_is_valid_timezone(self):
        assert is_valid_timezone("Europe/Paris") is True
        assert is_valid_timezone("Fake/City") is False


class TestLocalHourAndDay:
    """Tests for local_hour and local_day."""

    def test_local_hour_with_offset(self):
        """05:00 UTC is 07:00 at +02:00."""
        tz = resolve_zone("+02:00")
        assert local_hour(datetime(2026, 3, 2, 5, 0), tz) == 7

    def test_local_day_crosses_midnight(self):
        """23:30 UTC is already the next day at +02:00."""
        tz = resolve_zone("+02:00")
        assert local_day(datetime(2026, 3, 2, 23, 30), tz) == date(2026, 3, 3)

    def test_local_day_behind_utc(self):
        """00:30 UTC is still the previous day at -05:00."""
        tz = resolve_zone("-05:00")
        assert local_day(datetime(2026, 3, 3, 0, 30), tz) == date(2026, 3, 2)

    def test_dst_zone(self):
        """Should follow DST transitions for IANA zones."""
        tz = ZoneInfo("Europe/Paris")
        assert local_hour(datetime(2026, 1, 15, 7, 0), tz) == 8  # CET
        assert local_hour(datetime(2026, 7, 15, 7, 0), tz) == 9  # CEST


class TestBoundaries:
    """Tests for window boundary helpers."""

    def test_next_hour_boundary(self):
        assert next_hour_boundary(datetime(2026, 3, 2, 5, 42, 10)) == datetime(2026, 3, 2, 6, 0)

    def test_next_hour_boundary_on_the_hour(self):
        """An instant on the hour belongs to the window ending one hour later."""
        assert next_hour_boundary(datetime(2026, 3, 2, 5, 0)) == datetime(2026, 3, 2, 6, 0)

    def test_next_day_boundary(self):
        assert next_day_boundary(datetime(2026, 3, 2, 23, 59)) == datetime(2026, 3, 3, 0, 0)

    def test_to_naive_utc(self):
        aware = datetime(2026, 3, 2, 7, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_naive_utc(aware) == datetime(2026, 3, 2, 5, 0)
        assert to_naive_utc(datetime(2026, 3, 2, 5, 0)) == datetime(2026, 3, 2, 5, 0)
