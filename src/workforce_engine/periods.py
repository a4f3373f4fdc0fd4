"""Payroll period (calendar month) helpers."""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta
from typing import Iterator

from workforce_engine.exceptions import ValidationError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def period_of(day: date) -> str:
    """Period key (YYYY-MM) for a calendar day."""
    return day.strftime("%Y-%m")


def parse_period(period: str) -> tuple[int, int]:
    """Split a period key into (year, month), validating it."""
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValidationError(f"Period must be YYYY-MM, got {period!r}", field="period")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month in period {period!r}", field="period")
    return year, month


def period_bounds(period: str) -> tuple[date, date]:
    """First and last day of a period, inclusive."""
    year, month = parse_period(period)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def days_in_period(period: str) -> int:
    start, end = period_bounds(period)
    return (end - start).days + 1


def next_period(period: str) -> str:
    _, end = period_bounds(period)
    return period_of(end + timedelta(days=1))


def iter_days(start: date, end: date) -> Iterator[date]:
    """Calendar days from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def periods_between(start: date, end: date) -> list[str]:
    """Every period touched by the inclusive range, in order."""
    periods: list[str] = []
    current = date(start.year, start.month, 1)
    while current <= end:
        periods.append(period_of(current))
        current = date(current.year + (current.month == 12), current.month % 12 + 1, 1)
    return periods


def overlap_days(start: date, end: date, period: str) -> int:
    """Number of calendar days of [start, end] falling inside the period."""
    period_start, period_end = period_bounds(period)
    lo = max(start, period_start)
    hi = min(end, period_end)
    if hi < lo:
        return 0
    return (hi - lo).days + 1
