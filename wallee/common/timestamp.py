"""
Timestamp Utilities

UTC enforcement and interval boundary alignment.

Every timestamp that crosses a module boundary in this package must be
timezone-aware UTC. Naive or non-UTC datetimes are caller errors.

Example:
    14:37:12 UTC aligned to a 900s interval is 14:30:00 UTC, the start of
    the quarter-hour used by the capacity tariff.
"""

from datetime import datetime, timedelta, timezone

QUARTER_HOUR_SECONDS = 900


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def is_utc(ts: datetime) -> bool:
    """True if ts is timezone-aware with a zero UTC offset"""
    return ts.tzinfo is not None and ts.utcoffset() == timedelta(0)


def require_utc(ts: datetime, name: str = "timestamp") -> datetime:
    """
    Validate that a timestamp is UTC.

    Raises:
        ValueError: if ts is naive or carries a non-zero offset
    """
    if not is_utc(ts):
        raise ValueError(f"{name} must be a timezone-aware UTC datetime, got {ts!r}")
    return ts


def align_timestamp(ts: datetime, interval_seconds: float) -> datetime:
    """
    Align timestamp down to the previous interval boundary.

    Args:
        ts: The timestamp to align (timezone-aware)
        interval_seconds: The interval in seconds

    Returns:
        Aligned datetime, preserving the original timezone

    Examples:
        14:30:17 with 60s  -> 14:30:00
        14:44:59 with 900s -> 14:30:00
        14:45:00 with 900s -> 14:45:00
    """
    if interval_seconds <= 0:
        return ts

    epoch = ts.timestamp()
    aligned_epoch = (epoch // interval_seconds) * interval_seconds

    tz = ts.tzinfo or timezone.utc
    return datetime.fromtimestamp(aligned_epoch, tz)


def most_recent_quarter_hour(ts: datetime) -> datetime:
    """Start of the quarter-hour (:00, :15, :30, :45 UTC) containing ts"""
    require_utc(ts)
    return align_timestamp(ts, QUARTER_HOUR_SECONDS)


def to_unix(ts: datetime) -> int:
    """UTC datetime to whole Unix seconds"""
    require_utc(ts)
    return int(ts.timestamp())


def from_unix(seconds: int) -> datetime:
    """Unix seconds to an aware UTC datetime"""
    return datetime.fromtimestamp(seconds, timezone.utc)


def parse_utc_iso(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp that must carry an explicit UTC marker.

    Accepts "Z" or "+00:00" suffixes.

    Raises:
        ValueError: if the string cannot be parsed or is not UTC
    """
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return require_utc(dt, "value")
