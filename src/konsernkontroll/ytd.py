# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Year-to-date budget targets and deviations.

Two display modes are supported:

- ``month_end``: the YTD target is the budget of all fully elapsed months.
  The current, partial month contributes nothing. This is the
  "budget as of last month end" view.
- ``today``: same as ``month_end`` plus a linear pro-ration of the current
  month's budget by ``day_of_month / days_in_month``.

The deviation of an actual YTD result against a target is reported both
in absolute terms and as a percentage of the target. A zero target always
yields a 0% deviation.
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Optional

from .budget import parse_budget_months

YtdMode = Literal["month_end", "today"]
"""Display mode used to compute the YTD budget target."""

YTD_MODES: tuple[str, ...] = ("month_end", "today")


@dataclass(frozen=True)
class Deviation:
    """Actual result minus budget target, absolute and in percent."""

    deviation: float
    deviation_percent: float


def _today() -> date:
    """Return today's date as a date object (isolated for easier testing)."""
    return datetime.today().date()


def compute_ytd(
    budget_months: list[float],
    reference_date: Optional[date] = None,
    mode: str = "month_end",
) -> float:
    """
    Compute the year-to-date budget target.

    Parameters
    ----------
    budget_months:
        Canonical 12-month budget, January first. Anything else is
        normalized first (and degrades to a zero budget).
    reference_date:
        Calendar point the YTD figure is computed for (today by default).
    mode:
        ``"month_end"`` or ``"today"``. Unknown modes behave as
        ``"month_end"``.

    Returns
    -------
    float
        The budget target up to the reference date.
    """
    months = parse_budget_months(budget_months)
    ref = reference_date or _today()
    month_index = ref.month - 1

    target = float(sum(months[:month_index]))

    if mode == "today":
        days_in_month = monthrange(ref.year, ref.month)[1]
        target += months[month_index] * (ref.day / days_in_month)

    return target


def compute_deviation(result_ytd: float, budget_ytd: float) -> Deviation:
    """Return the deviation of ``result_ytd`` against ``budget_ytd``."""
    deviation = result_ytd - budget_ytd
    percent = (deviation / budget_ytd) * 100 if budget_ytd != 0 else 0.0
    return Deviation(deviation=deviation, deviation_percent=percent)
