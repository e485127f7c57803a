# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Canonical in-memory data model for KonsernKontroll.

Every record that reaches calculation or presentation code is one of the
dataclasses defined here. Raw storage rows never flow past the
reconciliation boundary (see ``reconcile.py``): they are decoded into these
types with every field defaulted, so that presentation code can format any
value unconditionally.

Entities
--------
- ``Company``: a subsidiary with its cached financial snapshot and budget.
- ``ComputedCompanyData``: a ``Company`` plus the derived, non-persisted
  YTD budget and deviation figures for one display mode and reference date.
- ``Report``: one entry of a company's append-only reporting log.
- ``ReportInput``: the partial set of financial fields supplied when a
  report is submitted or edited.
- ``User``: a controller or leader, with the companies they may access.
- ``Forecast``: expected receivables/payables for one company and month.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Literal, Optional

BudgetMode = Literal["annual", "quarterly", "monthly"]
"""How a budget was last entered (kept for round-tripping the edit form)."""

ReportStatus = Literal["draft", "submitted", "approved"]
"""
Lifecycle status of a report.

``draft`` exists in the storage schema but is never produced by the
current workflows.
"""

ReportSource = Literal["Manuell", "Tripletex", "PowerOffice", "Visma"]

Role = Literal["controller", "leader"]

BUDGET_MODES: tuple[str, ...] = ("annual", "quarterly", "monthly")
REPORT_STATUSES: tuple[str, ...] = ("draft", "submitted", "approved")
REPORT_SOURCES: tuple[str, ...] = ("Manuell", "Tripletex", "PowerOffice", "Visma")
ROLES: tuple[str, ...] = ("controller", "leader")

NO_MANAGER_PLACEHOLDER = "No manager assigned"

# Financial fields that a report may carry, each independently optional.
REPORT_AMOUNT_FIELDS: tuple[str, ...] = (
    "revenue",
    "expenses",
    "result",
    "liquidity",
    "receivables",
    "accounts_payable",
    "public_fees",
    "salary_expenses",
)

# As-of dates paired with the financial fields above.
REPORT_DATE_FIELDS: tuple[str, ...] = (
    "pnl_date",
    "liquidity_date",
    "receivables_date",
    "accounts_payable_date",
    "public_fees_date",
    "salary_expenses_date",
)


def _zero_months() -> list[float]:
    return [0.0] * 12


@dataclass(frozen=True)
class Company:
    """
    Canonical subsidiary record.

    Attributes
    ----------
    id, group_id:
        Stable identifier and owning tenant (holding company).
    name, full_name:
        Short code displayed on cards, and the legal/full name.
    manager:
        Derived display string: comma-joined names of the company's leaders.
    revenue, expenses, result_ytd:
        P&L snapshot. ``result_ytd`` is revenue - expenses when it comes
        from a report, but can be overridden by a manual edit.
    liquidity, receivables, accounts_payable, public_fees, salary_expenses:
        Balance snapshot figures, each with an as-of date string.
    budget_total, budget_mode, budget_months:
        Annual budget, how it was entered, and the canonical 12-month
        January-first breakdown.
    sort_order:
        Controller-assigned display position.
    trend_history, prev_liquidity, prev_deviation:
        Comparison-period values fed by an external process (read-only here).
    last_report_date, last_report_by, comment:
        Cache of the most recent report.
    """

    id: int
    group_id: int = 0
    name: str = ""
    full_name: str = ""
    manager: str = ""

    revenue: float = 0.0
    expenses: float = 0.0
    result_ytd: float = 0.0
    pnl_date: str = ""

    liquidity: float = 0.0
    liquidity_date: str = ""
    receivables: float = 0.0
    receivables_date: str = ""
    accounts_payable: float = 0.0
    accounts_payable_date: str = ""
    public_fees: float = 0.0
    public_fees_date: str = ""
    salary_expenses: float = 0.0
    salary_expenses_date: str = ""

    budget_total: float = 0.0
    budget_mode: BudgetMode = "annual"
    budget_months: list[float] = field(default_factory=_zero_months)

    sort_order: int = 0
    trend_history: float = 0.0
    prev_liquidity: float = 0.0
    prev_deviation: float = 0.0

    last_report_date: str = ""
    last_report_by: str = ""
    comment: str = ""


@dataclass(frozen=True)
class ComputedCompanyData(Company):
    """
    Company enriched with derived figures for one display pass.

    These values are recomputed from the company, the current display mode
    and the reference date on every pass; they are never persisted.
    """

    calculated_budget_ytd: float = 0.0
    calculated_deviation: float = 0.0
    calculated_deviation_percent: float = 0.0

    @classmethod
    def from_company(
        cls,
        company: Company,
        *,
        budget_ytd: float,
        deviation: float,
        deviation_percent: float,
    ) -> "ComputedCompanyData":
        values = {f.name: getattr(company, f.name) for f in fields(Company)}
        values["budget_months"] = list(company.budget_months)
        return cls(
            **values,
            calculated_budget_ytd=budget_ytd,
            calculated_deviation=deviation,
            calculated_deviation_percent=deviation_percent,
        )


@dataclass(frozen=True)
class ReportInput:
    """
    Financial fields supplied with a report submission or edit.

    Each attribute is optional. Only non-None values are written, so a
    report carrying only ``liquidity`` never overwrites the company's
    revenue, expenses or result.
    """

    revenue: Optional[float] = None
    expenses: Optional[float] = None
    result: Optional[float] = None
    liquidity: Optional[float] = None
    receivables: Optional[float] = None
    accounts_payable: Optional[float] = None
    public_fees: Optional[float] = None
    salary_expenses: Optional[float] = None

    pnl_date: Optional[str] = None
    liquidity_date: Optional[str] = None
    receivables_date: Optional[str] = None
    accounts_payable_date: Optional[str] = None
    public_fees_date: Optional[str] = None
    salary_expenses_date: Optional[str] = None

    comment: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class Report:
    """
    One entry of a company's reporting log.

    Absent financial fields are ``None`` (not zero): they were not part of
    the submission. Once ``status == "approved"`` the report is read-only
    until a controller unlocks it.
    """

    id: int
    company_id: int
    author_name: str = ""
    date: str = ""
    comment: str = ""
    source: str = "Manuell"
    status: ReportStatus = "submitted"

    revenue: Optional[float] = None
    expenses: Optional[float] = None
    result: Optional[float] = None
    liquidity: Optional[float] = None
    receivables: Optional[float] = None
    accounts_payable: Optional[float] = None
    public_fees: Optional[float] = None
    salary_expenses: Optional[float] = None

    pnl_date: Optional[str] = None
    liquidity_date: Optional[str] = None
    receivables_date: Optional[str] = None
    accounts_payable_date: Optional[str] = None
    public_fees_date: Optional[str] = None
    salary_expenses_date: Optional[str] = None

    submitted_by_user_id: Optional[int] = None
    approved_by_user_id: Optional[int] = None
    approved_at: Optional[str] = None

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


@dataclass(frozen=True)
class User:
    """
    Dashboard user.

    ``company_ids`` holds the multi-company access grants. ``company_id`` is
    the deprecated single-company pointer, honoured only when no grants
    exist.
    """

    id: int
    email: str = ""
    full_name: str = ""
    role: Role = "leader"
    group_id: int = 0
    company_id: Optional[int] = None
    company_ids: tuple[int, ...] = ()
    auth_id: Optional[str] = None

    @property
    def is_controller(self) -> bool:
        return self.role == "controller"


@dataclass(frozen=True)
class Forecast:
    """Expected cash movement for a company in a future month (YYYY-MM)."""

    company_id: int
    month: str
    estimated_receivables: float = 0.0
    estimated_payables: float = 0.0
    id: Optional[int] = None
