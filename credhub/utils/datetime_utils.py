"""Datetime conversion utilities."""

from datetime import UTC, datetime, timedelta


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def expires_at_from(expires_in: int | float | None, now: datetime | None = None) -> datetime | None:
    """Convert a relative ``expires_in`` (seconds) into an absolute UTC timestamp.

    Returns None when the provider reported no lifetime (missing or zero).
    """
    if not expires_in:
        return None
    base = now or datetime.now(UTC)
    return base + timedelta(seconds=int(expires_in))


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """Return True when ``expires_at`` lies in the past."""
    if expires_at is None:
        return False
    return ensure_utc(expires_at) <= (now or datetime.now(UTC))
