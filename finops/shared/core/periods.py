"""Calendar-month arithmetic for aggregation windows."""

import calendar
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_start(day: date) -> date:
    return day.replace(day=1)


def shift_months(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day`` (negative goes back)."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def previous_month_start(day: date) -> date:
    return shift_months(day, -1)


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"
