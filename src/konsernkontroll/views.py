# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for KonsernKontroll.

This module turns computed company data and report logs into the plain
structures and pandas DataFrames consumed by the CLI (and any other
presentation layer). It performs no I/O and never mutates its inputs.

The main views are:

- dashboard:  one row per visible company with YTD budget and deviation,
              sortable by result, deviation or liquidity,
- control:    the dashboard restricted to companies behind budget,
- risk:       liquidity against deviation, classified in quadrants,
- reports:    a company's reporting log, newest first.

Status rules
------------
- deviation >= 0                  -> "success"
- danger_threshold <= dev < 0     -> "warning"
- deviation < danger_threshold    -> "danger" (default threshold -15 %)
"""

import math
from dataclasses import dataclass
from typing import Literal

import pandas as pd

from .budget import round_half_up
from .models import Company, ComputedCompanyData, Report

SortField = Literal["default", "result", "deviation", "liquidity"]
"""Dashboard ordering selected by the user."""

SORT_FIELDS: tuple[str, ...] = ("default", "result", "deviation", "liquidity")

StatusType = Literal["success", "warning", "danger"]

RiskQuadrant = Literal["danger", "watch", "good"]

DEFAULT_DANGER_DEVIATION = -15.0
DEFAULT_LOW_LIQUIDITY = 300_000.0

UNKNOWN_AUTHOR = "Ukjent"

DASHBOARD_COLUMNS = [
    "id",
    "name",
    "manager",
    "result_ytd",
    "budget_ytd",
    "deviation",
    "deviation_pct",
    "status",
    "liquidity",
    "net_position",
    "last_report_date",
]

REPORT_COLUMNS = [
    "id",
    "date",
    "author",
    "status",
    "source",
    "revenue",
    "expenses",
    "result",
    "liquidity",
    "receivables",
    "accounts_payable",
    "comment",
]


@dataclass(frozen=True)
class PortfolioTotals:
    """Group-level header figures."""

    total_result_ytd: float
    total_budget_ytd: float
    total_annual_budget: float
    total_liquidity: float

    @property
    def deviation_percent(self) -> float:
        if self.total_budget_ytd == 0:
            return 0.0
        return (self.total_result_ytd - self.total_budget_ytd) / self.total_budget_ytd * 100


def sort_companies(
    computed: list[ComputedCompanyData], sort_field: str = "default"
) -> list[ComputedCompanyData]:
    """
    Return ``computed`` in display order.

    - "result":    result YTD, highest first
    - "deviation": deviation percent, worst first
    - "liquidity": liquidity, highest first
    - otherwise:   ``sort_order``, then id
    """
    if sort_field == "result":
        return sorted(computed, key=lambda c: c.result_ytd, reverse=True)
    if sort_field == "deviation":
        return sorted(computed, key=lambda c: c.calculated_deviation_percent)
    if sort_field == "liquidity":
        return sorted(computed, key=lambda c: c.liquidity, reverse=True)
    return sorted(computed, key=lambda c: (c.sort_order, c.id))


def control_view(computed: list[ComputedCompanyData]) -> list[ComputedCompanyData]:
    """Companies behind their YTD budget."""
    return [c for c in computed if c.calculated_deviation_percent < 0]


def portfolio_totals(computed: list[ComputedCompanyData]) -> PortfolioTotals:
    return PortfolioTotals(
        total_result_ytd=float(sum(c.result_ytd for c in computed)),
        total_budget_ytd=float(sum(c.calculated_budget_ytd for c in computed)),
        total_annual_budget=float(sum(c.budget_total for c in computed)),
        total_liquidity=float(sum(c.liquidity for c in computed)),
    )


def deviation_status(
    deviation_percent: float, danger_threshold: float = DEFAULT_DANGER_DEVIATION
) -> StatusType:
    if deviation_percent < danger_threshold:
        return "danger"
    if deviation_percent < 0:
        return "warning"
    return "success"


def net_position(company: Company) -> float:
    """Receivables minus accounts payable plus liquidity."""
    return company.receivables - company.accounts_payable + company.liquidity


def risk_quadrant(
    liquidity: float,
    deviation_percent: float,
    low_liquidity: float = DEFAULT_LOW_LIQUIDITY,
) -> RiskQuadrant:
    """
    Classify a company in the liquidity/deviation risk matrix.

    Low liquidity together with a negative deviation is "danger", neither is
    "good", and exactly one of the two is "watch".
    """
    is_low = liquidity < low_liquidity
    is_negative = deviation_percent < 0
    if is_low and is_negative:
        return "danger"
    if not is_low and not is_negative:
        return "good"
    return "watch"


def format_amount(value: float) -> str:
    """
    Format an amount for display.

    Millions are shown with at most one decimal and an "M" suffix
    ("1.2 M", "5 M"); smaller amounts as integers with a space as thousands
    separator ("450 000").
    """
    if value is None or not math.isfinite(value):
        return "0"
    if abs(value) >= 1_000_000:
        sign = "-" if value < 0 else ""
        tenths = round_half_up(abs(value) / 100_000)
        whole, frac = divmod(tenths, 10)
        text = f"{whole}.{frac}" if frac else f"{whole}"
        return f"{sign}{text} M"
    sign = "-" if value < 0 else ""
    return sign + f"{round_half_up(abs(value)):,}".replace(",", " ")


def companies_to_dataframe(
    computed: list[ComputedCompanyData],
    decimals: int = 0,
    danger_threshold: float = DEFAULT_DANGER_DEVIATION,
) -> pd.DataFrame:
    """
    Convert computed companies into the dashboard DataFrame.

    Rows keep the order of ``computed``. Amounts are rounded to ``decimals``
    and the deviation percent to one decimal.
    """
    if not computed:
        return pd.DataFrame(columns=DASHBOARD_COLUMNS)

    rows: list[dict[str, object]] = []
    for c in computed:
        rows.append(
            {
                "id": c.id,
                "name": c.name,
                "manager": c.manager,
                "result_ytd": round(c.result_ytd, decimals),
                "budget_ytd": round(c.calculated_budget_ytd, decimals),
                "deviation": round(c.calculated_deviation, decimals),
                "deviation_pct": round(c.calculated_deviation_percent, 1),
                "status": deviation_status(c.calculated_deviation_percent, danger_threshold),
                "liquidity": round(c.liquidity, decimals),
                "net_position": round(net_position(c), decimals),
                "last_report_date": c.last_report_date,
            }
        )
    return pd.DataFrame(rows)[DASHBOARD_COLUMNS]


def risk_matrix(
    computed: list[ComputedCompanyData],
    low_liquidity: float = DEFAULT_LOW_LIQUIDITY,
) -> pd.DataFrame:
    """Liquidity (x) against deviation percent (y), with the risk quadrant."""
    columns = ["name", "liquidity", "deviation_pct", "prev_liquidity", "prev_deviation", "quadrant"]
    if not computed:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(
        {
            "name": [c.name for c in computed],
            "liquidity": [c.liquidity for c in computed],
            "deviation_pct": [round(c.calculated_deviation_percent, 1) for c in computed],
            "prev_liquidity": [c.prev_liquidity for c in computed],
            "prev_deviation": [c.prev_deviation for c in computed],
        }
    )
    df["quadrant"] = [
        risk_quadrant(liq, dev, low_liquidity)
        for liq, dev in zip(df["liquidity"], df["deviation_pct"])
    ]
    return df[columns]


def reports_to_dataframe(reports: list[Report]) -> pd.DataFrame:
    """
    Convert a reporting log into a DataFrame.

    Absent financial fields stay empty (NaN) rather than 0, so a report that
    only carried liquidity does not look like a zero result.
    """
    if not reports:
        return pd.DataFrame(columns=REPORT_COLUMNS)

    rows = [
        {
            "id": r.id,
            "date": r.date,
            "author": r.author_name or UNKNOWN_AUTHOR,
            "status": r.status,
            "source": r.source,
            "revenue": r.revenue,
            "expenses": r.expenses,
            "result": r.result,
            "liquidity": r.liquidity,
            "receivables": r.receivables,
            "accounts_payable": r.accounts_payable,
            "comment": r.comment,
        }
        for r in reports
    ]
    return pd.DataFrame(rows)[REPORT_COLUMNS]
