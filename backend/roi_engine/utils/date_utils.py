# backend/roi_engine/utils/date_utils.py
"""
Date utility functions for the ROI engine.

All engine dates are UTC calendar days. Timestamps from the database or the
price provider are converted with `to_utc_date` before any comparison.

Usage:
    from roi_engine.utils.date_utils import date_range, utc_today

    for day in date_range(start, utc_today()):
        ...
"""

from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone


def utc_today() -> date:
    """Current UTC calendar date."""
    return datetime.now(timezone.utc).date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_date(value: datetime | date) -> date:
    """
    Calendar date in UTC.

    Naive datetimes (SQLite returns these) are taken to be UTC already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def date_range(start_date: date, end_date: date) -> Iterator[date]:
    """
    Every calendar day from start_date to end_date, inclusive.

    Yields nothing when start_date is after end_date.
    """
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def to_date_key(value: date | datetime | None) -> str | None:
    """ISO "YYYY-MM-DD" key used in API payloads."""
    if value is None:
        return None
    return to_utc_date(value).isoformat()


def month_key(value: date) -> str:
    """"YYYY-MM" bucket for monthly aggregation."""
    return f"{value.year:04d}-{value.month:02d}"


def day_start_timestamp(value: date) -> int:
    """Unix seconds at 00:00 UTC of the given day."""
    return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())


def day_end_timestamp(value: date) -> int:
    """Unix seconds at 23:59:59 UTC of the given day."""
    return day_start_timestamp(value) + 86399
