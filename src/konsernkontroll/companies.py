# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Company administration services.

``CompanyRegistry`` owns the canonical in-memory list of a group's
companies and is the only code path that mutates it. It sits between:

- the storage boundary (``storage.TableStore``), and
- user-facing layers (the CLI, the application context, the ledger and
  the access resolver, which patch snapshot and manager fields through it).

Rules
-----
- Every write goes to storage first. The in-memory list is only updated
  with the row storage returns, so a failed write leaves it unchanged and
  the ``StorageError`` reaches the caller.
- Attribute names are converted to the storage spelling with
  ``to_storage_fields`` before writing.
- The list is always kept sorted by ``sort_order`` (stable).
- A lock guards the list because the background poller reloads it from
  another thread.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any, Optional

from .activity import ActivityLog
from .budget import allocate, parse_budget_months
from .models import Company, ComputedCompanyData
from .reconcile import (
    compute_all,
    reconcile_companies,
    reconcile_company,
    to_storage_fields,
)
from .storage import RowPatch, TableStore, first_row

logger = logging.getLogger(__name__)


class CompanyRegistry:
    """Canonical company collection of one group, backed by a ``TableStore``."""

    def __init__(
        self,
        store: TableStore,
        group_id: int,
        activity: Optional[ActivityLog] = None,
        actor_id: Optional[int] = None,
    ):
        self.store = store
        self.group_id = group_id
        self.activity = activity
        self.actor_id = actor_id
        self._companies: list[Company] = []
        self._lock = threading.RLock()

    # -- reads -------------------------------------------------------------

    def fetch(self) -> list[Company]:
        """Read and reconcile the group's companies without touching the cache."""
        rows = self.store.fetch_rows("companies", {"group_id": self.group_id})
        return reconcile_companies(rows)

    def reload(self) -> list[Company]:
        """Replace the in-memory list with a fresh read from storage."""
        companies = self.fetch()
        self.replace_all(companies)
        return list(companies)

    def replace_all(self, companies: Iterable[Company]) -> None:
        with self._lock:
            self._companies = sorted(companies, key=lambda c: c.sort_order)

    def all(self) -> list[Company]:
        with self._lock:
            return list(self._companies)

    def get(self, company_id: int) -> Optional[Company]:
        with self._lock:
            return next((c for c in self._companies if c.id == company_id), None)

    def computed(
        self,
        reference_date: Optional[date] = None,
        mode: str = "month_end",
        companies: Optional[Iterable[Company]] = None,
    ) -> list[ComputedCompanyData]:
        """Derived YTD figures for ``companies`` (all companies by default)."""
        return compute_all(
            self.all() if companies is None else companies, reference_date, mode
        )

    # -- writes ------------------------------------------------------------

    def _store_company(self, company: Company) -> Company:
        with self._lock:
            kept = [c for c in self._companies if c.id != company.id]
            kept.append(company)
            self._companies = sorted(kept, key=lambda c: c.sort_order)
        return company

    def _patch(self, company_id: int, storage_fields: Mapping[str, Any]) -> Company:
        rows = self.store.patch_rows(
            "companies", RowPatch(id=company_id, fields=dict(storage_fields))
        )
        return self._store_company(reconcile_company(first_row(rows, "companies")))

    def _record(self, action: str, entity_id: Optional[int], details: str = "") -> None:
        if self.activity is not None:
            self.activity.record(self.actor_id, action, "company", entity_id, details)

    @staticmethod
    def _with_budget(storage_fields: dict[str, Any]) -> dict[str, Any]:
        # A bare annual total is re-spread so the stored months agree with it.
        if "budget_total" in storage_fields and "budget_months" not in storage_fields:
            alloc = allocate("annual", storage_fields["budget_total"])
            storage_fields["budget_months"] = alloc.budget_months
            storage_fields.setdefault("budget_mode", alloc.budget_mode)
        return storage_fields

    def add(self, fields: Mapping[str, Any]) -> Company:
        """
        Create a company in this group.

        Missing ``sort_order`` places the company last. A budget given only
        as ``budget_total`` is spread evenly over the year.
        """
        storage_fields = self._with_budget(to_storage_fields(fields))
        storage_fields["group_id"] = self.group_id
        storage_fields.setdefault("sort_order", len(self.all()))
        storage_fields.setdefault(
            "budget_months",
            parse_budget_months(None, storage_fields.get("budget_total", 0)),
        )

        rows = self.store.insert_rows("companies", [storage_fields])
        company = self._store_company(reconcile_company(first_row(rows, "companies")))
        self._record("company.add", company.id, company.name)
        return company

    def update(self, company_id: int, fields: Mapping[str, Any]) -> Company:
        """Patch a company. ``result_ytd`` may be overridden directly here."""
        storage_fields = self._with_budget(to_storage_fields(fields))
        company = self._patch(company_id, storage_fields)
        self._record("company.update", company_id, ", ".join(sorted(storage_fields)))
        return company

    def set_budget(self, company_id: int, mode: str, values: Any) -> Company:
        """Allocate a budget entered per year, quarter or month and save it."""
        alloc = allocate(mode, values)
        company = self._patch(
            company_id,
            {
                "budget_total": alloc.budget_total,
                "budget_mode": alloc.budget_mode,
                "budget_months": alloc.budget_months,
            },
        )
        self._record("company.budget", company_id, f"{alloc.budget_mode} {alloc.budget_total:.0f}")
        return company

    def owns(self, company_id: int) -> bool:
        """True when ``company_id`` belongs to this registry's group."""
        if self.get(company_id) is not None:
            return True
        return any(c.id == company_id for c in self.fetch())

    def delete(self, company_id: int) -> bool:
        """
        Hard-delete a company of this group.

        Returns False without touching storage when the company is unknown
        or belongs to another group.

        Raises
        ------
        StorageError
            With status 409 when reports still reference the company.
        """
        if not self.owns(company_id):
            logger.warning(
                "Refusing to delete company %s: not in group %s", company_id, self.group_id
            )
            return False
        deleted = self.store.delete_rows("companies", [company_id])
        with self._lock:
            self._companies = [c for c in self._companies if c.id != company_id]
        if deleted:
            self._record("company.delete", company_id)
        return bool(deleted)

    def reorder(self, company_ids: list[int]) -> list[Company]:
        """
        Persist a new display order.

        Listed companies get ``sort_order`` 0..n-1 in the given order;
        unlisted companies follow in their current order. Ids outside this
        group are ignored.
        """
        own_ids = [c.id for c in self.all()]
        order = [cid for cid in dict.fromkeys(company_ids) if cid in own_ids]
        dropped = set(company_ids) - set(order)
        if dropped:
            logger.warning("Ignoring companies outside group %s: %s", self.group_id, sorted(dropped))
        order += [cid for cid in own_ids if cid not in order]
        patches = [RowPatch(id=cid, fields={"sort_order": i}) for i, cid in enumerate(order)]
        rows = self.store.patch_rows("companies", patches)
        updated = {c.id: c for c in reconcile_companies(rows)}
        with self._lock:
            merged = [updated.get(c.id, c) for c in self._companies]
            self._companies = sorted(merged, key=lambda c: c.sort_order)
        return self.all()

    def apply_snapshot(self, company_id: int, fields: Mapping[str, Any]) -> Company:
        """Merge reported figures into the cached company snapshot."""
        return self._patch(company_id, to_storage_fields(fields))

    def set_manager(self, company_id: int, manager: str) -> Company:
        return self._patch(company_id, {"manager": manager})
