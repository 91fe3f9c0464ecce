"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models use naive UTC).

Usage:
    from sendledger.core.datetime_utils import utc_now, is_expired, get_cutoff

    # Current time
    now = utc_now()

    # Check expiry
    if is_expired(token.expires_at):
        raise TokenExpired()

    # Epoch milliseconds, for cooldown bucketing
    bucket = from_epoch_ms((epoch_ms_now() // 60_000) * 60_000)
    to_iso_millis(bucket)  # "2026-01-10T10:00:00.000Z"
"""

from datetime import UTC, datetime, timedelta

_EPOCH = datetime(1970, 1, 1)


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def is_expired(expires_at: datetime) -> bool:
    """Check if a timestamp has expired.

    Args:
        expires_at: Expiry timestamp (naive UTC)

    Returns:
        True if current time is past expires_at
    """
    return utc_now() > expires_at


def get_cutoff(hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days)
    return utc_now() - delta


def get_expiry(minutes: int = 0, hours: int = 0, days: int = 0) -> datetime:
    """Get future expiry datetime.

    Args:
        minutes: Minutes to add to now
        hours: Hours to add to now
        days: Days to add to now

    Returns:
        Naive UTC datetime representing the expiry point
    """
    delta = timedelta(minutes=minutes, hours=hours, days=days)
    return utc_now() + delta


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
    # Convert to UTC and strip timezone
    return dt.astimezone(UTC).replace(tzinfo=None)


# =============================================================================
# Epoch millisecond utilities
# =============================================================================


def epoch_ms_now() -> int:
    """Current time as integer milliseconds since the Unix epoch."""
    return int(datetime.now(UTC).timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    """Convert integer epoch milliseconds to a naive UTC datetime.

    Uses integer timedelta arithmetic so there is no float rounding
    at millisecond boundaries.
    """
    return _EPOCH + timedelta(milliseconds=ms)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime (naive UTC or aware) to integer epoch milliseconds."""
    delta = to_naive_utc(dt) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def to_iso_millis(dt: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision and a Z suffix.

    Example: 1970-01-01T00:05:00.000Z
    """
    naive = to_naive_utc(dt)
    return naive.strftime("%Y-%m-%dT%H:%M:%S.") + f"{naive.microsecond // 1000:03d}Z"
