from datetime import datetime, UTC
from typing import Optional


def to_utc_naive(dt: datetime) -> datetime:
    """SQLite keeps no tzinfo: normalise to UTC and strip it before storing."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.replace(tzinfo=None)


def utc_naive_now() -> datetime:
    return to_utc_naive(datetime.now(UTC))


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a stored (naive) timestamp."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
