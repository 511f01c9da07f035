"""UTC-everywhere time handling.

Expiries are stored as epoch milliseconds (comparable in SQL); audit
timestamps are ISO-8601 strings.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current time in UTC. Use this instead of datetime.now() everywhere."""
    return datetime.now(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds.

    Raises ValueError if the datetime is naive.
    """
    if dt.tzinfo is None:
        raise ValueError("Cannot convert naive datetime. Datetime must be timezone-aware.")
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()
