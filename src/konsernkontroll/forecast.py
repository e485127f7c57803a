# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Liquidity forecasts.

A forecast holds the receivables a company expects to collect and the
payables it expects to settle in a future month (``YYYY-MM``). Forecasts
are keyed by ``(company_id, month)``: saving a month that already exists
updates it in place.

``project_liquidity`` rolls the company's current liquidity forward month
by month with the forecast net flows.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

import pandas as pd

from .models import Company, Forecast
from .reconcile import RecordDecodeError, decode_forecast
from .storage import RowPatch, TableStore, first_row

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

PROJECTION_COLUMNS = [
    "month",
    "estimated_receivables",
    "estimated_payables",
    "net_flow",
    "projected_liquidity",
]


def _check_month(month: str) -> str:
    month = month.strip()
    if not _MONTH_RE.match(month):
        raise ValueError(f"Invalid forecast month: {month!r}. Expected YYYY-MM.")
    return month


class ForecastBook:
    """Forecast rows of a set of companies."""

    def __init__(self, store: TableStore):
        self.store = store

    def load(self, company_id: int) -> list[Forecast]:
        """Forecasts of one company, sorted by month."""
        forecasts: list[Forecast] = []
        for row in self.store.fetch_rows("forecasts", {"company_id": company_id}):
            try:
                forecasts.append(decode_forecast(row))
            except RecordDecodeError as exc:
                logger.warning("Skipping forecast row: %s", exc)
        return sorted(forecasts, key=lambda f: f.month)

    def upsert(
        self,
        company_id: int,
        month: str,
        estimated_receivables: float = 0.0,
        estimated_payables: float = 0.0,
    ) -> Forecast:
        """
        Save the forecast of ``company_id`` for ``month``.

        Raises
        ------
        ValueError
            If ``month`` is not ``YYYY-MM``.
        StorageError
            If the write fails.
        """
        month = _check_month(month)
        fields = {
            "estimated_receivables": estimated_receivables,
            "estimated_payables": estimated_payables,
            "updated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        existing = self.store.fetch_rows(
            "forecasts", {"company_id": company_id, "month": month}
        )
        if existing:
            rows = self.store.patch_rows(
                "forecasts", RowPatch(id=existing[0]["id"], fields=fields)
            )
        else:
            rows = self.store.insert_rows(
                "forecasts", [{"company_id": company_id, "month": month, **fields}]
            )
        return decode_forecast(first_row(rows, "forecasts"))

    def project_liquidity(
        self, company: Company, forecasts: Optional[list[Forecast]] = None
    ) -> pd.DataFrame:
        """Projection for ``company``, loading its forecasts when not given."""
        if forecasts is None:
            forecasts = self.load(company.id)
        return project_liquidity(company, forecasts)


def project_liquidity(
    company: Company, forecasts: list[Forecast], start_liquidity: Optional[float] = None
) -> pd.DataFrame:
    """
    Project liquidity forward over the forecast months.

    Parameters
    ----------
    company:
        Company whose current liquidity is the starting point.
    forecasts:
        Forecasts of that company (any order; other companies are ignored).
    start_liquidity:
        Override for the starting liquidity.

    Returns
    -------
    pd.DataFrame
        One row per month with columns ``PROJECTION_COLUMNS``.
    """
    own = sorted((f for f in forecasts if f.company_id == company.id), key=lambda f: f.month)
    if not own:
        return pd.DataFrame(columns=PROJECTION_COLUMNS)

    df = pd.DataFrame(
        {
            "month": [f.month for f in own],
            "estimated_receivables": [f.estimated_receivables for f in own],
            "estimated_payables": [f.estimated_payables for f in own],
        }
    )
    start = company.liquidity if start_liquidity is None else start_liquidity
    df["net_flow"] = df["estimated_receivables"] - df["estimated_payables"]
    df["projected_liquidity"] = start + df["net_flow"].cumsum()
    return df[PROJECTION_COLUMNS]
