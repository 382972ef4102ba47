"""UTC helpers and granularity-aligned window arithmetic.

All timestamps inside the engine are naive datetimes in UTC. Aware datetimes
coming in from callers are converted once at the boundary with ``as_utc``.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterator, Tuple
import enum


class Granularity(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(ts: datetime) -> datetime:
    """Normalize to a naive UTC datetime. Naive input is assumed to be UTC already."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def floor_to(ts: datetime, granularity: Granularity) -> datetime:
    if granularity == Granularity.HOURLY:
        return ts.replace(minute=0, second=0, microsecond=0)
    if granularity == Granularity.DAILY:
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)
    return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_boundary(start: datetime, granularity: Granularity) -> datetime:
    """End of the window beginning at an aligned ``start``."""
    if granularity == Granularity.HOURLY:
        return start + timedelta(hours=1)
    if granularity == Granularity.DAILY:
        return start + timedelta(days=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def windows(from_ts: datetime, to_ts: datetime, granularity: Granularity) -> Iterator[Tuple[datetime, datetime]]:
    """
    Yield (start, end) windows covering [from_ts, to_ts).
    The first window is aligned down so that it contains from_ts.
    """
    if to_ts <= from_ts:
        return
    start = floor_to(from_ts, granularity)
    while start < to_ts:
        end = next_boundary(start, granularity)
        yield start, end
        start = end


def hours_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / 3600)
