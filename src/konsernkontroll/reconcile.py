# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Reconciliation boundary between storage rows and the canonical model.

Rows returned by storage are loosely typed: the same logical field may be
spelled in camelCase or snake_case, numbers may arrive as strings, and
budgets may be JSON text or array literals. This module is the single
place where that mess is resolved.

Responsibilities
----------------
1) Field aliases
   - ``FIELD_ALIASES`` maps every canonical attribute to the storage keys
     that may carry it, in lookup priority order.
   - ``read_field`` is the only dual-spelling lookup in the code base.

2) Typed decode
   - ``reconcile_company`` / ``decode_report`` / ``decode_user`` /
     ``decode_forecast`` produce fully-defaulted dataclasses, or raise a
     ``RecordDecodeError`` when a row cannot identify itself (not a mapping,
     missing or non-numeric id).
   - Numeric fields never carry NaN or None into the model: they degrade
     to 0. String fields degrade to "".
   - Report amounts are the exception: absence is meaningful there and is
     kept as ``None``.

3) Derived figures
   - ``compute_company`` / ``compute_all`` attach the YTD budget target and
     deviation for one display mode and reference date.

4) Write path
   - ``to_storage_fields`` converts canonical (or camelCase) attribute
     names to the single spelling written back to storage.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any, Optional

from .budget import parse_budget_months, to_number
from .models import (
    BUDGET_MODES,
    REPORT_STATUSES,
    ROLES,
    Company,
    ComputedCompanyData,
    Forecast,
    Report,
    User,
)
from .ytd import compute_deviation, compute_ytd

logger = logging.getLogger(__name__)


class RecordDecodeError(ValueError):
    """A storage row could not be decoded into a canonical record."""

    def __init__(self, entity: str, message: str, raw: Any = None):
        self.entity = entity
        self.raw = raw
        super().__init__(f"Cannot decode {entity}: {message}")


class CompanyDecodeError(RecordDecodeError):
    """A companies row could not be decoded."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__("company", message, raw)


# ---------------------------------------------------------------------------
# Field aliases
# ---------------------------------------------------------------------------

# Canonical attribute -> storage keys, first match wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "group_id": ("groupId", "group_id"),
    "company_id": ("companyId", "company_id"),
    "user_id": ("userId", "user_id"),
    "name": ("name",),
    "full_name": ("fullName", "full_name"),
    "manager": ("manager",),
    "revenue": ("revenue",),
    "expenses": ("expenses",),
    "result_ytd": ("resultYTD", "result_ytd", "resultYtd"),
    "pnl_date": ("pnlDate", "pnl_date"),
    "liquidity": ("liquidity",),
    "liquidity_date": ("liquidityDate", "liquidity_date"),
    "receivables": ("receivables",),
    "receivables_date": ("receivablesDate", "receivables_date"),
    "accounts_payable": ("accountsPayable", "accounts_payable"),
    "accounts_payable_date": ("accountsPayableDate", "accounts_payable_date"),
    "public_fees": ("publicFees", "public_fees"),
    "public_fees_date": ("publicFeesDate", "public_fees_date"),
    "salary_expenses": ("salaryExpenses", "salary_expenses"),
    "salary_expenses_date": ("salaryExpensesDate", "salary_expenses_date"),
    "budget_total": ("budgetTotal", "budget_total"),
    "budget_mode": ("budgetMode", "budget_mode"),
    "budget_months": ("budgetMonths", "budget_months"),
    "sort_order": ("sortOrder", "sort_order"),
    "trend_history": ("trendHistory", "trend_history"),
    "prev_liquidity": ("prevLiquidity", "prev_liquidity"),
    "prev_deviation": ("prevDeviation", "prev_deviation", "prev_trend"),
    "last_report_date": ("lastReportDate", "last_report_date"),
    "last_report_by": ("lastReportBy", "last_report_by"),
    "comment": ("current_comment", "currentComment", "comment"),
    # reports
    "author_name": ("authorName", "author_name"),
    "report_date": ("reportDate", "report_date", "date", "created_at"),
    "result": ("result", "result_ytd", "resultYTD"),
    "source": ("source",),
    "status": ("status",),
    "submitted_by_user_id": ("submittedByUserId", "submitted_by_user_id"),
    "approved_by_user_id": ("approvedByUserId", "approved_by_user_id", "approvedBy"),
    "approved_at": ("approvedAt", "approved_at"),
    # users
    "email": ("email",),
    "role": ("role",),
    "auth_id": ("authId", "auth_id"),
    # forecasts
    "month": ("month",),
    "estimated_receivables": ("estimatedReceivables", "estimated_receivables"),
    "estimated_payables": ("estimatedPayables", "estimated_payables"),
}

# Company attributes written under a different column name.
_COMPANY_COLUMNS: dict[str, str] = {"comment": "current_comment"}

_COMPANY_NUMBERS = (
    "revenue",
    "expenses",
    "result_ytd",
    "liquidity",
    "receivables",
    "accounts_payable",
    "public_fees",
    "salary_expenses",
    "trend_history",
    "prev_liquidity",
    "prev_deviation",
)

_COMPANY_STRINGS = (
    "name",
    "full_name",
    "manager",
    "pnl_date",
    "liquidity_date",
    "receivables_date",
    "accounts_payable_date",
    "public_fees_date",
    "salary_expenses_date",
    "last_report_date",
    "last_report_by",
    "comment",
)

_REPORT_AMOUNTS = (
    "revenue",
    "expenses",
    "result",
    "liquidity",
    "receivables",
    "accounts_payable",
    "public_fees",
    "salary_expenses",
)

_REPORT_DATES = (
    "pnl_date",
    "liquidity_date",
    "receivables_date",
    "accounts_payable_date",
    "public_fees_date",
    "salary_expenses_date",
)

_REVERSE_ALIASES: dict[str, str] = {
    alias: canonical
    for canonical, aliases in FIELD_ALIASES.items()
    for alias in aliases
    if canonical not in ("report_date", "result")
}


def read_field(raw: Mapping[str, Any], canonical: str, default: Any = None) -> Any:
    """
    Return the first non-None value stored under any alias of ``canonical``.

    Unknown canonical names are looked up verbatim.
    """
    for key in FIELD_ALIASES.get(canonical, (canonical,)):
        value = raw.get(key)
        if value is not None:
            return value
    return default


def _number(raw: Mapping[str, Any], canonical: str) -> float:
    value = to_number(read_field(raw, canonical))
    return value if math.isfinite(value) else 0.0


def _optional_number(raw: Mapping[str, Any], canonical: str) -> Optional[float]:
    value = read_field(raw, canonical)
    if value is None:
        return None
    number = to_number(value)
    return number if math.isfinite(number) else None


def _string(raw: Mapping[str, Any], canonical: str) -> str:
    value = read_field(raw, canonical)
    return "" if value is None else str(value)


def _optional_string(raw: Mapping[str, Any], canonical: str) -> Optional[str]:
    value = read_field(raw, canonical)
    return None if value is None else str(value)


def _optional_id(raw: Mapping[str, Any], canonical: str) -> Optional[int]:
    value = _optional_number(raw, canonical)
    return None if value is None else int(value)


def _decode_error(entity: str, message: str, raw: Any) -> RecordDecodeError:
    if entity == "company":
        return CompanyDecodeError(message, raw)
    return RecordDecodeError(entity, message, raw)


def _require_id(raw: Any, entity: str, canonical: str = "id") -> int:
    if not isinstance(raw, Mapping):
        raise _decode_error(entity, f"expected a mapping, got {type(raw).__name__}", raw)
    value = _optional_number(raw, canonical)
    if value is None or value != int(value):
        raise _decode_error(entity, f"missing or invalid {canonical!r}", raw)
    return int(value)


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def reconcile_company(raw: Any) -> Company:
    """
    Decode one raw ``companies`` row into a canonical ``Company``.

    Budget handling:
    - the stored months are parsed with the annual total as fallback;
    - when a usable monthly breakdown exists it is the source of truth and
      ``budget_total`` is recomputed as its sum;
    - otherwise the annual total is spread evenly over the year.

    Raises
    ------
    CompanyDecodeError
        If ``raw`` is not a mapping or carries no usable id.
    """
    company_id = _require_id(raw, "company")

    values: dict[str, Any] = {"id": company_id}
    for name in _COMPANY_NUMBERS:
        values[name] = _number(raw, name)
    for name in _COMPANY_STRINGS:
        values[name] = _string(raw, name)

    values["group_id"] = int(_number(raw, "group_id"))
    values["sort_order"] = int(_number(raw, "sort_order"))

    budget_total = _number(raw, "budget_total")
    months = parse_budget_months(read_field(raw, "budget_months"), budget_total)
    if any(months):
        budget_total = float(sum(months))
    values["budget_total"] = budget_total
    values["budget_months"] = months

    mode = read_field(raw, "budget_mode")
    values["budget_mode"] = mode if mode in BUDGET_MODES else "annual"

    return Company(**values)


def reconcile_companies(rows: Iterable[Any]) -> list[Company]:
    """
    Decode every row and sort the result by ``sort_order``.

    Undecodable rows are skipped and logged. The sort is stable, so ties
    keep their storage order.
    """
    companies: list[Company] = []
    for raw in rows:
        try:
            companies.append(reconcile_company(raw))
        except RecordDecodeError as exc:
            logger.warning("Skipping company row: %s", exc)
    return sorted(companies, key=lambda c: c.sort_order)


def compute_company(
    company: Company,
    reference_date: Optional[date] = None,
    mode: str = "month_end",
) -> ComputedCompanyData:
    """Attach the YTD budget target and deviation to ``company``."""
    budget_ytd = compute_ytd(company.budget_months, reference_date, mode)
    dev = compute_deviation(company.result_ytd, budget_ytd)
    return ComputedCompanyData.from_company(
        company,
        budget_ytd=budget_ytd,
        deviation=dev.deviation,
        deviation_percent=dev.deviation_percent,
    )


def compute_all(
    companies: Iterable[Company],
    reference_date: Optional[date] = None,
    mode: str = "month_end",
) -> list[ComputedCompanyData]:
    """Compute every company for one display pass, preserving order."""
    return [compute_company(c, reference_date, mode) for c in companies]


# ---------------------------------------------------------------------------
# Reports, users, forecasts
# ---------------------------------------------------------------------------


def decode_report(raw: Any) -> Report:
    """
    Decode one raw ``reports`` row.

    Financial fields that are absent or unparsable stay ``None``.
    """
    report_id = _require_id(raw, "report")
    company_id = _optional_id(raw, "company_id")
    if company_id is None:
        raise RecordDecodeError("report", "missing or invalid 'company_id'", raw)

    status = read_field(raw, "status")
    values: dict[str, Any] = {
        "id": report_id,
        "company_id": company_id,
        "author_name": _string(raw, "author_name"),
        "date": _string(raw, "report_date"),
        "comment": _string(raw, "comment"),
        "source": _string(raw, "source") or "Manuell",
        "status": status if status in REPORT_STATUSES else "submitted",
        "submitted_by_user_id": _optional_id(raw, "submitted_by_user_id"),
        "approved_by_user_id": _optional_id(raw, "approved_by_user_id"),
        "approved_at": _optional_string(raw, "approved_at"),
    }
    for name in _REPORT_AMOUNTS:
        values[name] = _optional_number(raw, name)
    for name in _REPORT_DATES:
        values[name] = _optional_string(raw, name)
    return Report(**values)


def decode_user(raw: Any, company_ids: Iterable[int] = ()) -> User:
    """Decode one raw ``users`` row, attaching its access grants."""
    user_id = _require_id(raw, "user")
    role = read_field(raw, "role")
    grants: list[int] = []
    for cid in company_ids:
        if cid not in grants:
            grants.append(int(cid))
    return User(
        id=user_id,
        email=_string(raw, "email"),
        full_name=_string(raw, "full_name"),
        role=role if role in ROLES else "leader",
        group_id=int(_number(raw, "group_id")),
        company_id=_optional_id(raw, "company_id"),
        company_ids=tuple(grants),
        auth_id=_optional_string(raw, "auth_id"),
    )


def decode_forecast(raw: Any) -> Forecast:
    """Decode one raw ``forecasts`` row."""
    forecast_id = _require_id(raw, "forecast")
    company_id = _optional_id(raw, "company_id")
    if company_id is None:
        raise RecordDecodeError("forecast", "missing or invalid 'company_id'", raw)
    return Forecast(
        id=forecast_id,
        company_id=company_id,
        month=_string(raw, "month"),
        estimated_receivables=_number(raw, "estimated_receivables"),
        estimated_payables=_number(raw, "estimated_payables"),
    )


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


def to_storage_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """
    Convert company attribute names to the storage spelling.

    Accepts canonical snake_case or camelCase keys. ``id`` is never
    written. ``budget_months`` is written as a plain list of 12 numbers.

    Raises
    ------
    ValueError
        If a key is not a known company attribute.
    """
    known = (
        set(_COMPANY_NUMBERS)
        | set(_COMPANY_STRINGS)
        | {"group_id", "sort_order", "budget_total", "budget_mode", "budget_months"}
    )
    out: dict[str, Any] = {}
    for key, value in fields.items():
        canonical = key if key in known else _REVERSE_ALIASES.get(key)
        if canonical == "id":
            continue
        if canonical not in known:
            raise ValueError(f"Unknown company field: {key!r}")
        if canonical == "budget_months":
            value = [float(v) for v in parse_budget_months(value)]
        out[_COMPANY_COLUMNS.get(canonical, canonical)] = value
    return out
