"""Centralized datetime utilities for consistent timezone handling.

All functions return naive datetimes for database compatibility
(SQLAlchemy models use naive UTC).

Usage:
    from courier.core.datetime_utils import utc_now, resolve_zone, local_hour

    tz = resolve_zone(preference.timezone, settings.default_timezone_offset)
    if local_hour(tick_time, tz) == preference.send_hour:
        ...

A user's zone may be an IANA identifier ("Africa/Johannesburg") or a fixed
UTC offset ("+02:00", "UTC+2", "GMT-05:30").
"""

import re
from datetime import UTC, date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


class InvalidZoneError(ValueError):
    """Raised when a zone string is neither an IANA name nor a UTC offset."""


def utc_now() -> datetime:
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier."""
    try:
        ZoneInfo(tz_name)
        return True
    except (KeyError, ValueError):
        return False


def parse_utc_offset(value: str) -> timezone | None:
    """Parse a fixed UTC offset like "+02:00", "UTC+2" or "GMT-0530".

    Returns None when the value is not an offset expression.
    """
    match = _OFFSET_RE.match(value.strip())
    if not match:
        return None

    sign, hours, minutes = match.group(1), int(match.group(2)), int(match.group(3) or 0)
    if hours > 14 or minutes > 59:
        return None

    delta = timedelta(hours=hours, minutes=minutes)
    return timezone(-delta if sign == "-" else delta)


def resolve_zone(value: str | None, default_offset: str = "+00:00") -> tzinfo:
    """Resolve a stored zone string to a tzinfo.

    Empty values fall back to the deployment default offset.

    Raises:
        InvalidZoneError: If neither the value nor the default can be parsed
    """
    raw = (value or "").strip() or default_offset

    if raw.upper() in ("UTC", "GMT", "Z"):
        return UTC

    offset = parse_utc_offset(raw)
    if offset is not None:
        return offset

    if "/" in raw and is_valid_timezone(raw):
        return ZoneInfo(raw)

    raise InvalidZoneError(f"Unrecognised timezone: {raw!r}")


def to_local(instant: datetime, tz: tzinfo) -> datetime:
    """Convert a naive-UTC (or aware) instant to local time in tz."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(tz)


def local_hour(instant: datetime, tz: tzinfo) -> int:
    """Hour of day (0-23) of instant in tz."""
    return to_local(instant, tz).hour


def local_day(instant: datetime, tz: tzinfo) -> date:
    """Calendar day of instant in tz."""
    return to_local(instant, tz).date()


def top_of_hour(instant: datetime) -> datetime:
    return instant.replace(minute=0, second=0, microsecond=0)


def next_hour_boundary(instant: datetime) -> datetime:
    """Start of the next UTC hour after instant."""
    return top_of_hour(instant) + timedelta(hours=1)


def next_day_boundary(instant: datetime) -> datetime:
    """Next UTC midnight after instant."""
    return instant.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
