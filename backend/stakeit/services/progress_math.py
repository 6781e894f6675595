from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

ONE_DAY = timedelta(days=1)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(moment: datetime) -> date:
    """Calendar day used for check-ins: the UTC date of `moment`."""
    return as_utc(moment).date()


def _ceil_days(delta: timedelta) -> int:
    if delta <= timedelta(0):
        return 0
    days, remainder = divmod(delta, ONE_DAY)
    return days + (1 if remainder else 0)


def compute_total_days(start_date: datetime, end_date: datetime) -> int:
    """ceil((end - start) / 1 day); 0 when the window is empty."""
    return _ceil_days(as_utc(end_date) - as_utc(start_date))


def compute_days_remaining(end_date: datetime, now: datetime) -> int:
    return _ceil_days(as_utc(end_date) - as_utc(now))


def rounded_percentage(part: int, whole: int) -> int:
    """Nearest-int percentage (half rounds up); 0 when `whole` is 0."""
    if whole <= 0:
        return 0
    ratio = (Decimal(part) * Decimal("100")) / Decimal(whole)
    return int(ratio.to_integral_value(rounding=ROUND_HALF_UP))
