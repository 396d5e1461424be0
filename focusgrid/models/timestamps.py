"""Timestamp helpers (naive UTC everywhere)."""

from datetime import datetime, timedelta, timezone
from typing import Optional

ONE_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo after converting to UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def stamp_after(previous: Optional[datetime], candidate: Optional[datetime] = None) -> datetime:
    """Return a write stamp strictly greater than `previous`.

    Uses `candidate` (default: now) unless it does not move past `previous`,
    in which case `previous` plus one microsecond is used.
    """
    stamp = as_naive_utc(candidate) if candidate is not None else utcnow()
    if previous is not None and stamp <= previous:
        return previous + ONE_TICK
    return stamp
