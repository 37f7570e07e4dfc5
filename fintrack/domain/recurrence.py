"""
Deterministic next-occurrence computation for recurring income and budgets.

Uses date only (no timezone).

Recurrence types:
- daily: +1 day
- weekly: +7 days
- biweekly: +14 days
- monthly: +1 calendar month (day clipped to the month's last day)
- custom: +N calendar months, N = recurrence_interval
"""
import calendar
from datetime import date, timedelta
from enum import Enum

from fintrack.domain.errors import ValidationError


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


def parse_recurrence_type(value) -> RecurrenceType:
    if isinstance(value, RecurrenceType):
        return value
    try:
        return RecurrenceType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RecurrenceType)
        raise ValidationError(f"Unknown recurrence type {value!r}, expected one of: {allowed}") from None


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def validate_interval(recurrence_type: RecurrenceType, interval: int | None) -> int:
    """Interval only matters for CUSTOM; everything else is fixed at 1."""
    if recurrence_type is not RecurrenceType.CUSTOM:
        return 1
    if interval is None or interval < 1:
        raise ValidationError("Custom recurrence requires an interval of at least 1 month")
    return interval


def next_occurrence(recurrence_type: RecurrenceType, from_date: date, interval: int = 1) -> date:
    """
    Date of the occurrence following `from_date`.

    Always strictly greater than `from_date`.
    """
    if recurrence_type is RecurrenceType.DAILY:
        return from_date + timedelta(days=1)
    if recurrence_type is RecurrenceType.WEEKLY:
        return from_date + timedelta(days=7)
    if recurrence_type is RecurrenceType.BIWEEKLY:
        return from_date + timedelta(days=14)
    if recurrence_type is RecurrenceType.MONTHLY:
        return add_months(from_date, 1)
    if recurrence_type is RecurrenceType.CUSTOM:
        if interval < 1:
            raise ValidationError("interval must be >= 1")
        return add_months(from_date, interval)
    raise ValueError(f"unhandled recurrence type: {recurrence_type}")


def shift_period(start: date, end: date, recurrence_type: RecurrenceType, interval: int = 1) -> tuple[date, date]:
    """
    Move a [start, end] window forward by one recurrence step.

    A window that covers exactly one period (e.g. Jan 1 - Jan 31 for monthly)
    stays contiguous: the new end is the day before the following start.
    """
    new_start = next_occurrence(recurrence_type, start, interval)
    if end == new_start - timedelta(days=1):
        new_end = next_occurrence(recurrence_type, new_start, interval) - timedelta(days=1)
    else:
        new_end = next_occurrence(recurrence_type, end, interval)
    return new_start, new_end
