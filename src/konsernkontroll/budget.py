# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Budget normalization and allocation for KonsernKontroll.

Every company carries a canonical budget: an ordered list of exactly 12
monthly amounts, January first. This module produces that list from the
many shapes budgets take in storage and from the controller's edit form.

Parsing (``parse_budget_months``)
---------------------------------
Stored budgets may arrive as:

- a native sequence of 12 numbers,
- a keyed mapping (its values are taken in enumeration order),
- a JSON-encoded array string (``"[1000, 1000, ...]"``),
- a storage-engine array literal (``"{1000,1000,...}"``),
- a loose comma-separated string,
- nothing at all, with only the annual total known.

When no branch yields 12 finite numbers, or all 12 are zero, the annual
total fallback is spread evenly over the year.

Allocation (``allocate``)
-------------------------
The edit form accepts an annual figure, four quarterly figures or twelve
monthly figures. Integer rounding remainders are always absorbed by the
last sub-period of each unit (December for annual, the third month of
each quarter for quarterly), so the months always sum to exactly what the
user typed.

Neither function raises: malformed input degrades to a zero budget.
"""

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .models import BUDGET_MODES, BudgetMode

MONTHS_PER_YEAR = 12
MONTHS_PER_QUARTER = 3
QUARTERS_PER_YEAR = 4

_BRACKETS_RE = re.compile(r"[\[\]{}]")


@dataclass(frozen=True)
class BudgetAllocation:
    """Result of allocating a user-entered budget over the year."""

    budget_mode: BudgetMode
    budget_total: float
    budget_months: list[float]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves upwards (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def to_number(value: Any) -> float:
    """
    Coerce a loosely-typed value to a float.

    ``None`` and blank strings become 0, booleans become 0/1, numeric
    strings are parsed. Anything else becomes NaN, which callers treat as
    "not a number".
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _twelve_finite(values: list[float]) -> bool:
    return len(values) == MONTHS_PER_YEAR and all(math.isfinite(v) for v in values)


def _parse_string(text: str) -> list[float] | None:
    text = text.strip()
    if text.startswith("{") and text.endswith("}"):
        text = "[" + text[1:-1] + "]"

    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None

    if isinstance(decoded, list):
        return [to_number(v) for v in decoded]

    # Loose "1,2,3" fallback: accepted only if every token is numeric.
    tokens = [t.strip() for t in _BRACKETS_RE.sub("", text).split(",")]
    if not tokens or any(not t for t in tokens):
        return None
    values = [to_number(t) for t in tokens]
    if not all(math.isfinite(v) for v in values):
        return None
    return values


def _candidate_months(raw: Any) -> list[float] | None:
    if isinstance(raw, (list, tuple)):
        return [to_number(v) for v in raw]
    if isinstance(raw, Mapping):
        return [to_number(v) for v in raw.values()]
    if isinstance(raw, str):
        return _parse_string(raw)
    return None


def spread_evenly(total: float, periods: int = MONTHS_PER_YEAR) -> list[float]:
    """
    Spread ``total`` over ``periods`` equal integer parts.

    The last period absorbs the rounding remainder so that the parts sum
    exactly to ``total``. When rounding up would leave the last period
    negative (small totals such as 7 over 12 months), the parts are rounded
    down instead, so a non-negative total never yields a negative part.
    """
    per_period = round_half_up(total / periods)
    if total >= 0 and per_period * (periods - 1) > total:
        per_period = math.floor(total / periods)
    parts = [float(per_period)] * (periods - 1)
    parts.append(float(total - per_period * (periods - 1)))
    return parts


def parse_budget_months(raw: Any, annual_total_fallback: Any = 0) -> list[float]:
    """
    Normalize a stored budget into a canonical 12-month list.

    Parameters
    ----------
    raw:
        Stored representation (sequence, mapping, string or None).
    annual_total_fallback:
        Annual budget used when no usable monthly breakdown exists.

    Returns
    -------
    list[float]
        Exactly 12 finite numbers, January first.
    """
    candidate = _candidate_months(raw)
    months = candidate if candidate is not None and _twelve_finite(candidate) else None

    fallback = to_number(annual_total_fallback)
    if not math.isfinite(fallback):
        fallback = 0.0

    if (months is None or all(v == 0 for v in months)) and fallback > 0:
        return spread_evenly(fallback)

    if months is None:
        return [0.0] * MONTHS_PER_YEAR
    return months


def _fit(values: Any, size: int) -> list[float]:
    """Coerce ``values`` to exactly ``size`` finite numbers (pad with zeros)."""
    if isinstance(values, Mapping):
        values = list(values.values())
    if not isinstance(values, (list, tuple)):
        values = [values]
    numbers = []
    for v in list(values)[:size]:
        n = to_number(v)
        numbers.append(n if math.isfinite(n) else 0.0)
    return numbers + [0.0] * (size - len(numbers))


def allocate(mode: str, values: Any) -> BudgetAllocation:
    """
    Allocate a user-entered budget to the canonical 12-month list.

    Parameters
    ----------
    mode:
        ``"annual"`` (a single figure), ``"quarterly"`` (four figures) or
        ``"monthly"`` (twelve figures). Unknown modes are treated as annual.
    values:
        The figure(s) for the selected mode. Lists that are too short are
        padded with zeros, extra items are ignored.

    Returns
    -------
    BudgetAllocation
        The mode, the recomputed annual total and the 12 months.
    """
    if mode not in BUDGET_MODES:
        mode = "annual"

    if mode == "monthly":
        months = _fit(values, MONTHS_PER_YEAR)
        return BudgetAllocation("monthly", float(sum(months)), months)

    if mode == "quarterly":
        quarters = _fit(values, QUARTERS_PER_YEAR)
        months = []
        for q_total in quarters:
            months.extend(spread_evenly(q_total, MONTHS_PER_QUARTER))
        return BudgetAllocation("quarterly", float(sum(quarters)), months)

    annual = values[0] if isinstance(values, (list, tuple)) and values else values
    total = _fit(annual, 1)[0]
    return BudgetAllocation("annual", total, spread_evenly(total))


def quarterly_totals(budget_months: list[float]) -> list[float]:
    """Sum a 12-month budget back into four quarters (for the edit form)."""
    months = parse_budget_months(budget_months)
    return [
        float(sum(months[q * MONTHS_PER_QUARTER : (q + 1) * MONTHS_PER_QUARTER]))
        for q in range(QUARTERS_PER_YEAR)
    ]
