"""Date manipulation utilities"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; naive values are assumed to be UTC already"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end, floored at zero"""
    return max(0, (as_naive_utc(end) - as_naive_utc(start)).days)


def is_past(deadline: datetime | None, now: datetime) -> bool:
    return deadline is not None and as_naive_utc(now) > as_naive_utc(deadline)
