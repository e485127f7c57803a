import math
from datetime import date

import pytest

from konsernkontroll.models import Company, Report
from konsernkontroll.reconcile import compute_all
from konsernkontroll.views import (
    DASHBOARD_COLUMNS,
    REPORT_COLUMNS,
    UNKNOWN_AUTHOR,
    companies_to_dataframe,
    control_view,
    deviation_status,
    format_amount,
    net_position,
    portfolio_totals,
    reports_to_dataframe,
    risk_matrix,
    risk_quadrant,
    sort_companies,
)

REF = date(2024, 7, 1)  # six full months elapsed


@pytest.fixture
def computed():
    companies = [
        Company(id=1, name="A", sort_order=2, result_ytd=700.0, liquidity=500_000.0, budget_months=[100.0] * 12, budget_total=1200.0),
        Company(id=2, name="B", sort_order=0, result_ytd=300.0, liquidity=100_000.0, budget_months=[100.0] * 12, budget_total=1200.0),
        Company(id=3, name="C", sort_order=1, result_ytd=550.0, liquidity=900_000.0, budget_months=[100.0] * 12, budget_total=1200.0),
    ]
    return compute_all(companies, REF, "month_end")


@pytest.mark.parametrize(
    "value,expected",
    [
        (1_234_567, "1.2 M"),
        (5_000_000, "5 M"),
        (-1_500_000, "-1.5 M"),
        (450_000, "450 000"),
        (999.6, "1 000"),
        (-12_345, "-12 345"),
        (0, "0"),
        (None, "0"),
        (float("nan"), "0"),
    ],
)
def test_format_amount(value, expected) -> None:
    assert format_amount(value) == expected


def test_deviation_status_thresholds() -> None:
    assert deviation_status(0.0) == "success"
    assert deviation_status(-0.1) == "warning"
    assert deviation_status(-15.0) == "warning"
    assert deviation_status(-15.1) == "danger"
    assert deviation_status(-5.0, danger_threshold=-4.0) == "danger"


def test_risk_quadrant() -> None:
    assert risk_quadrant(100_000, -5.0) == "danger"
    assert risk_quadrant(100_000, 5.0) == "watch"
    assert risk_quadrant(900_000, -5.0) == "watch"
    assert risk_quadrant(900_000, 5.0) == "good"


def test_sort_companies(computed) -> None:
    assert [c.id for c in sort_companies(computed)] == [2, 3, 1]
    assert [c.id for c in sort_companies(computed, "result")] == [1, 3, 2]
    assert [c.id for c in sort_companies(computed, "deviation")] == [2, 3, 1]
    assert [c.id for c in sort_companies(computed, "liquidity")] == [3, 1, 2]


def test_control_view_keeps_companies_behind_budget(computed) -> None:
    assert [c.id for c in control_view(computed)] == [2, 3]


def test_portfolio_totals(computed) -> None:
    totals = portfolio_totals(computed)
    assert totals.total_result_ytd == 1550.0
    assert totals.total_budget_ytd == 1800.0
    assert totals.total_annual_budget == 3600.0
    assert totals.total_liquidity == 1_500_000.0
    assert totals.deviation_percent == pytest.approx(-250 / 1800 * 100)


def test_net_position() -> None:
    company = Company(id=1, liquidity=100.0, receivables=50.0, accounts_payable=30.0)
    assert net_position(company) == 120.0


def test_companies_to_dataframe(computed) -> None:
    df = companies_to_dataframe(computed)
    assert list(df.columns) == DASHBOARD_COLUMNS
    assert list(df["id"]) == [1, 2, 3]
    assert list(df["status"]) == ["success", "danger", "warning"]
    assert list(df["deviation_pct"]) == [16.7, -50.0, -8.3]


def test_companies_to_dataframe_empty() -> None:
    df = companies_to_dataframe([])
    assert df.empty
    assert list(df.columns) == DASHBOARD_COLUMNS


def test_risk_matrix(computed) -> None:
    df = risk_matrix(computed)
    assert list(df["quadrant"]) == ["good", "danger", "watch"]


def test_reports_to_dataframe_keeps_missing_values_empty() -> None:
    reports = [
        Report(id=1, company_id=1, date="2024-05-01", liquidity=10.0),
        Report(id=2, company_id=1, author_name="Ola", date="2024-04-01", result=5.0),
    ]
    df = reports_to_dataframe(reports)
    assert list(df.columns) == REPORT_COLUMNS
    assert df.loc[0, "author"] == UNKNOWN_AUTHOR
    assert math.isnan(df.loc[0, "result"])
    assert df.loc[1, "result"] == 5.0
