"""
fees.py
Fee schedule lookup and month-by-month dues accrual.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from errors import NoTierMatched
from models import FEE_SCHEDULE, DuesResult, FeeTier

logger = logging.getLogger(__name__)


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    last_day = end_of_month(date(y, m, 1))
    return date(y, m, min(start.day, last_day.day))


def end_of_month(d: date) -> date:
    if d.month == 12:
        return date(d.year, 12, 31)
    return date(d.year, d.month + 1, 1) - timedelta(days=1)


def first_month_after(d: date) -> date:
    return add_months(month_start(d), 1)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month (negative if end is earlier)."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def resolve_fee(month: date, schedule: tuple[FeeTier, ...] = FEE_SCHEDULE) -> Decimal:
    month = month_start(month)
    for tier in schedule:
        if tier.covers(month):
            return tier.fee
    logger.error("Fee schedule has no tier for %s", month.isoformat())
    raise NoTierMatched(month)


def calculate_dues(start_date: date, end_date: date, schedule: tuple[FeeTier, ...] = FEE_SCHEDULE) -> DuesResult:
    """
    Total dues owed from start_date's month through end_date's month, inclusive.

    Returns a zero result when start falls in a later month than end.
    """
    start = month_start(start_date)
    end = month_start(end_date)
    if start > end:
        return DuesResult(Decimal("0"), [])

    total = Decimal("0")
    breakdown: list[tuple[date, Decimal]] = []
    for i in range(months_between(start, end) + 1):
        month = add_months(start, i)
        fee = resolve_fee(month, schedule)
        total += fee
        breakdown.append((month, fee))
    return DuesResult(total, breakdown)
