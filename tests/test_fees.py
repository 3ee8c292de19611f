"""Fee schedule lookup and dues accrual."""

from datetime import date
from decimal import Decimal

import pytest

from errors import NoTierMatched
from fees import add_months, calculate_dues, end_of_month, first_month_after, months_between, resolve_fee
from models import FEE_SCHEDULE, FeeTier


@pytest.mark.parametrize(
    "day, fee",
    [
        (date(2001, 5, 1), 30),
        (date(2007, 4, 30), 30),
        (date(2007, 5, 1), 50),
        (date(2014, 4, 15), 50),
        (date(2014, 5, 1), 100),
        (date(2019, 6, 30), 100),
        (date(2019, 7, 1), 200),
        (date(2024, 3, 31), 200),
        (date(2024, 4, 1), 250),
        (date(2099, 1, 1), 250),
    ],
)
def test_resolve_fee_by_tier(day, fee):
    assert resolve_fee(day) == Decimal(fee)


def test_resolve_fee_normalises_to_month_start():
    # 2007-05-31 and 2007-05-01 are the same billing month
    assert resolve_fee(date(2007, 5, 31)) == resolve_fee(date(2007, 5, 1)) == Decimal("50")


def test_resolve_fee_before_first_tier_raises():
    with pytest.raises(NoTierMatched):
        resolve_fee(date(2001, 4, 30))


def test_resolve_fee_with_gap_in_schedule_raises():
    schedule = (
        FeeTier(date(2020, 1, 1), date(2020, 6, 30), Decimal("10")),
        FeeTier(date(2020, 8, 1), date(2020, 12, 31), Decimal("20")),
    )
    with pytest.raises(NoTierMatched) as info:
        resolve_fee(date(2020, 7, 10), schedule)
    assert info.value.month == date(2020, 7, 1)


def test_schedule_is_contiguous():
    for prev, nxt in zip(FEE_SCHEDULE, FEE_SCHEDULE[1:]):
        assert (nxt.start - prev.end).days == 1


def test_single_month_on_first_tier_boundary():
    result = calculate_dues(date(2001, 5, 1), date(2001, 5, 1))
    assert result.total_dues == Decimal("30")
    assert result.monthly_breakdown == [(date(2001, 5, 1), Decimal("30"))]


def test_range_spanning_tier_boundary():
    result = calculate_dues(date(2007, 4, 1), date(2007, 6, 1))
    assert result.total_dues == Decimal("130")
    assert result.monthly_breakdown == [
        (date(2007, 4, 1), Decimal("30")),
        (date(2007, 5, 1), Decimal("50")),
        (date(2007, 6, 1), Decimal("50")),
    ]


def test_start_after_end_is_zero():
    result = calculate_dues(date(2024, 6, 1), date(2024, 5, 31))
    assert result.total_dues == Decimal("0")
    assert result.monthly_breakdown == []


def test_days_within_same_month_count_once():
    result = calculate_dues(date(2024, 5, 20), date(2024, 5, 2))
    assert result.total_dues == Decimal("250")
    assert len(result.monthly_breakdown) == 1


def test_range_across_year_end_and_tier_change():
    result = calculate_dues(date(2023, 11, 15), date(2024, 5, 1))
    assert [m for m, _ in result.monthly_breakdown] == [
        date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1),
        date(2024, 3, 1), date(2024, 4, 1), date(2024, 5, 1),
    ]
    assert result.total_dues == Decimal("1500")


def test_full_history_total_is_exact():
    # May 2001 .. Dec 2024: 72*30 + 84*50 + 62*100 + 57*200 + 9*250
    result = calculate_dues(date(2001, 5, 1), date(2024, 12, 1))
    assert len(result.monthly_breakdown) == 284
    assert result.total_dues == Decimal(72 * 30 + 84 * 50 + 62 * 100 + 57 * 200 + 9 * 250)
    assert isinstance(result.total_dues, Decimal)


def test_month_helpers():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2024, 3, 1), -3) == date(2023, 12, 1)
    assert end_of_month(date(2023, 2, 10)) == date(2023, 2, 28)
    assert end_of_month(date(2022, 12, 5)) == date(2022, 12, 31)
    assert first_month_after(date(2022, 12, 15)) == date(2023, 1, 1)
    assert months_between(date(2020, 1, 1), date(2022, 12, 31)) == 35
