# src/usage_stats/db/time.py
"""Time utilities for millisecond timestamp columns."""

from datetime import UTC, datetime, timedelta

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def as_timestamp(value: datetime) -> int:
    """Convert a datetime to milliseconds since the Unix epoch."""
    return int(ensure_utc(value).timestamp() * 1000)


def truncate_day(value: datetime) -> datetime:
    """Truncate a datetime to the start of its UTC day."""
    return ensure_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def duration_ms(value: timedelta) -> int:
    """Return a timedelta as whole milliseconds."""
    return int(value.total_seconds() * 1000)
