"""
Period Calculator Module
Maps (period kind, anchor date) to inclusive calendar boundaries
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta

from .errors import ValidationError
from .models import PERIOD_KINDS, BudgetPeriod

DateLike = Union[date, datetime]


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise ValidationError(f"Expected a date or datetime, got {type(value).__name__}")


def start_of_day(value: DateLike) -> datetime:
    return _as_datetime(value).replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: DateLike) -> datetime:
    """23:59:59.999 of the given day"""
    return _as_datetime(value).replace(hour=23, minute=59, second=59, microsecond=999000)


def _check_kind(kind: str):
    if kind not in PERIOD_KINDS:
        raise ValidationError(f"Unknown period kind: {kind!r}")


def period_start(kind: str, value: DateLike) -> datetime:
    """
    First instant of the period containing ``value``

    Args:
        kind: One of weekly, monthly, quarterly, yearly
        value: Anchor date or datetime

    Returns:
        Period start at 00:00:00.000

    Raises:
        ValidationError: for an unrecognized kind
    """
    _check_kind(kind)
    day = start_of_day(value)

    if kind == "weekly":
        # Weeks run Sunday..Saturday
        days_since_sunday = (day.weekday() + 1) % 7
        return day - timedelta(days=days_since_sunday)
    if kind == "monthly":
        return day.replace(day=1)
    if kind == "quarterly":
        first_month = (day.month - 1) // 3 * 3 + 1
        return day.replace(month=first_month, day=1)
    return day.replace(month=1, day=1)


def period_end(kind: str, value: DateLike) -> datetime:
    """
    Last instant of the period containing ``value``

    Returns:
        Period end at 23:59:59.999
    """
    start = period_start(kind, value)

    if kind == "weekly":
        last_day = start + timedelta(days=6)
    elif kind == "monthly":
        last_day = start + relativedelta(months=1, days=-1)
    elif kind == "quarterly":
        last_day = start + relativedelta(months=3, days=-1)
    else:
        last_day = start.replace(month=12, day=31)

    return end_of_day(last_day)


def period_bounds(kind: str, value: DateLike) -> BudgetPeriod:
    anchor = _as_datetime(value)
    return BudgetPeriod(
        kind=kind,
        anchor=anchor,
        start=period_start(kind, anchor),
        end=period_end(kind, anchor),
    )


def next_period_start(kind: str, value: DateLike) -> datetime:
    """Day after the end of the period containing ``value``"""
    return start_of_day(period_end(kind, value) + timedelta(days=1))


def next_period_end(kind: str, value: DateLike) -> datetime:
    """End of the period that follows the one containing ``value``"""
    return period_end(kind, next_period_start(kind, value))


def next_period_bounds(kind: str, value: DateLike) -> BudgetPeriod:
    start = next_period_start(kind, value)
    return BudgetPeriod(kind=kind, anchor=start, start=start, end=period_end(kind, start))
