import math

import pytest

from konsernkontroll.budget import (
    allocate,
    parse_budget_months,
    quarterly_totals,
    round_half_up,
    spread_evenly,
    to_number,
)

MONTHS = [float(m) for m in range(1, 13)]


@pytest.mark.parametrize(
    "raw",
    [
        list(range(1, 13)),
        tuple(range(1, 13)),
        "[1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12]",
        "{1,2,3,4,5,6,7,8,9,10,11,12}",
        "1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12",
        {f"m{i}": i for i in range(1, 13)},
        [str(i) for i in range(1, 13)],
    ],
)
def test_parse_budget_months_accepts_stored_shapes(raw) -> None:
    """Every stored representation of 12 months yields the same canonical list."""
    assert parse_budget_months(raw) == MONTHS


def test_parse_budget_months_spreads_annual_total_when_missing() -> None:
    months = parse_budget_months(None, 1200)
    assert months == [100.0] * 12


def test_parse_budget_months_all_zero_uses_fallback() -> None:
    months = parse_budget_months([0] * 12, "1560000")
    assert months == [130000.0] * 12


def test_parse_budget_months_wrong_length_degrades_to_zero() -> None:
    assert parse_budget_months([1, 2, 3]) == [0.0] * 12
    assert parse_budget_months("not a budget") == [0.0] * 12
    assert parse_budget_months(42) == [0.0] * 12


def test_parse_budget_months_rejects_non_finite_values() -> None:
    raw = [100] * 11 + ["abc"]
    assert parse_budget_months(raw, 0) == [0.0] * 12
    assert parse_budget_months(raw, 2400) == [200.0] * 12


def test_parse_budget_months_ignores_invalid_fallback() -> None:
    assert parse_budget_months(None, "n/a") == [0.0] * 12
    assert parse_budget_months(None, -500) == [0.0] * 12


def test_spread_evenly_last_period_absorbs_remainder() -> None:
    parts = spread_evenly(1000)
    assert parts[:11] == [83.0] * 11
    assert parts[11] == 87.0
    assert sum(parts) == 1000


def test_spread_evenly_over_quarter() -> None:
    assert spread_evenly(100, 3) == [33.0, 33.0, 34.0]


def test_round_half_up_matches_display_rounding() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(-2.5) == -2
    assert round_half_up(83.333) == 83


def test_to_number_coercions() -> None:
    assert to_number(None) == 0.0
    assert to_number("") == 0.0
    assert to_number(" 12.5 ") == 12.5
    assert to_number(True) == 1.0
    assert math.isnan(to_number("abc"))
    assert math.isnan(to_number([1]))


def test_allocate_annual() -> None:
    alloc = allocate("annual", 1200)
    assert alloc.budget_mode == "annual"
    assert alloc.budget_total == 1200
    assert alloc.budget_months == [100.0] * 12


def test_allocate_annual_from_single_item_list() -> None:
    alloc = allocate("annual", ["1000"])
    assert alloc.budget_total == 1000
    assert sum(alloc.budget_months) == 1000


def test_allocate_quarterly_remainder_in_third_month() -> None:
    alloc = allocate("quarterly", [300, 300, 300, 100])
    assert alloc.budget_mode == "quarterly"
    assert alloc.budget_total == 1000
    assert alloc.budget_months[:9] == [100.0] * 9
    assert alloc.budget_months[9:] == [33.0, 33.0, 34.0]


def test_allocate_monthly_sums_months() -> None:
    alloc = allocate("monthly", list(range(1, 13)))
    assert alloc.budget_total == 78
    assert alloc.budget_months == MONTHS


def test_allocate_monthly_pads_short_input() -> None:
    alloc = allocate("monthly", [10, 20])
    assert alloc.budget_months == [10.0, 20.0] + [0.0] * 10
    assert alloc.budget_total == 30


def test_allocate_unknown_mode_falls_back_to_annual() -> None:
    alloc = allocate("weekly", 1200)
    assert alloc.budget_mode == "annual"
    assert alloc.budget_months == [100.0] * 12


def test_allocate_invalid_values_give_zero_budget() -> None:
    alloc = allocate("quarterly", ["x", None])
    assert alloc.budget_total == 0
    assert alloc.budget_months == [0.0] * 12


def test_quarterly_totals() -> None:
    assert quarterly_totals(MONTHS) == [6.0, 15.0, 24.0, 33.0]


@pytest.mark.parametrize("total", [120000, 100000, 1, 7, 999999])
def test_annual_allocation_has_no_rounding_drift(total) -> None:
    months = allocate("annual", total).budget_months
    assert len(months) == 12
    assert sum(months) == total


def test_quarterly_allocation_keeps_each_quarter_exact() -> None:
    months = allocate("quarterly", [30000, 30000, 30000, 30000]).budget_months
    for q in range(4):
        assert sum(months[q * 3 : q * 3 + 3]) == 30000


def test_canonical_input_is_returned_unchanged() -> None:
    months = [5.5, 0.0, 12.0, 1e6, 3.0, 3.0, 3.0, 3.0, 3.0, 3.0, 3.0, 0.25]
    assert parse_budget_months(months, 123456) == months


@pytest.mark.parametrize("garbage", [object(), "abc", "{x,y}", 3.5, [None] * 5, {"a": "b"}])
def test_garbage_input_yields_twelve_finite_non_negative_months(garbage) -> None:
    months = parse_budget_months(garbage, 1200)
    assert len(months) == 12
    assert all(math.isfinite(m) and m >= 0 for m in months)


def test_monthly_allocation_round_trip() -> None:
    arr = [1000.0, 2000.0, 0.0, 500.0, 500.0, 500.0, 700.0, 800.0, 900.0, 100.0, 0.0, 50.0]
    alloc = allocate("monthly", arr)
    assert alloc.budget_months == arr
    assert alloc.budget_total == sum(arr)


@pytest.mark.parametrize(
    ("total", "expected"),
    [
        (7, [0.0] * 11 + [7.0]),
        (6, [0.0] * 11 + [6.0]),
        (18, [1.0] * 11 + [7.0]),
        (11, [1.0] * 11 + [0.0]),
    ],
)
def test_small_annual_totals_never_produce_negative_months(total, expected) -> None:
    months = parse_budget_months(None, total)
    assert months == expected
    assert allocate("annual", total).budget_months == expected


def test_small_quarter_spread_stays_non_negative() -> None:
    assert spread_evenly(2, 3) == [1.0, 1.0, 0.0]
    assert spread_evenly(1, 3) == [0.0, 0.0, 1.0]
