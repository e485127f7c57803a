# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Report ledger: the append-only reporting log of each company.

Lifecycle
---------
::

    submitted --approve--> approved --unlock--> submitted
    submitted --delete--> (gone)

Only controllers approve and unlock. An approved report is read-only:
``edit`` and ``delete`` leave it untouched and return a "nothing happened"
value instead of raising. ``draft`` is a valid stored status but no
workflow produces it.

Snapshot propagation
--------------------
``submit`` writes a report row holding only the fields the caller supplied
(absent fields are omitted, never zeroed), then, once the insert has
returned, merges the same fields into the company's cached snapshot.
``last_report_date``, ``last_report_by`` and ``comment`` are always
refreshed. When both revenue and expenses are supplied the result is
derived as revenue - expenses.

Editing a report changes the report row only; the company snapshot keeps
the figures from the latest submission.

Storage failures propagate to the caller as ``StorageError``; in-memory
state is updated only after the storage call succeeded.
"""

import logging
from collections.abc import Mapping
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from .activity import ActivityLog
from .companies import CompanyRegistry
from .models import REPORT_AMOUNT_FIELDS, REPORT_DATE_FIELDS, Report, ReportInput, User
from .reconcile import RecordDecodeError, decode_report
from .storage import RowPatch, TableStore, first_row

logger = logging.getLogger(__name__)

Financials = Union[ReportInput, Mapping[str, Any]]

# Report attribute -> reports column.
_REPORT_COLUMNS = {"result": "result_ytd"}

# Report attribute -> company snapshot attribute.
_SNAPSHOT_FIELDS = {"result": "result_ytd"}


def _today() -> date:
    """Return today's date (isolated for easier testing)."""
    return datetime.today().date()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def supplied_fields(financials: Financials) -> dict[str, Any]:
    """
    Return the financial fields actually supplied, as a dict.

    ``None`` values are dropped. ``result`` is derived from revenue and
    expenses whenever both are present, including zeros.
    """
    raw = asdict(financials) if isinstance(financials, ReportInput) else dict(financials)
    out = {
        name: raw[name]
        for name in REPORT_AMOUNT_FIELDS + REPORT_DATE_FIELDS
        if raw.get(name) is not None
    }
    if "revenue" in out and "expenses" in out:
        out["result"] = out["revenue"] - out["expenses"]
    return out


def _author(author: Union[User, str, None]) -> tuple[str, Optional[int]]:
    if isinstance(author, User):
        return (author.full_name or author.email), author.id
    return (author or ""), None


class ReportLedger:
    """Per-company report log with the approve/unlock lifecycle."""

    def __init__(
        self,
        store: TableStore,
        registry: CompanyRegistry,
        activity: Optional[ActivityLog] = None,
    ):
        self.store = store
        self.registry = registry
        self.activity = activity
        self._reports: dict[int, Report] = {}

    # -- reads -------------------------------------------------------------

    def load(self, company_id: Optional[int] = None) -> list[Report]:
        """
        Load reports from storage into the ledger.

        Without ``company_id`` every report of the registry's companies is
        loaded. Undecodable rows are skipped and logged.
        """
        if company_id is None:
            filters = {"company_id": [c.id for c in self.registry.all()]}
        else:
            filters = {"company_id": company_id}
        rows = self.store.fetch_rows("reports", filters)

        loaded: list[Report] = []
        for row in rows:
            try:
                loaded.append(decode_report(row))
            except RecordDecodeError as exc:
                logger.warning("Skipping report row: %s", exc)

        if company_id is None:
            self._reports = {}
        else:
            self._reports = {
                rid: r for rid, r in self._reports.items() if r.company_id != company_id
            }
        self._reports.update((r.id, r) for r in loaded)
        return self.reports_for(company_id) if company_id is not None else self.all()

    def all(self) -> list[Report]:
        return sorted(self._reports.values(), key=lambda r: (r.date, r.id), reverse=True)

    def reports_for(self, company_id: int) -> list[Report]:
        """Reports of one company, newest first."""
        return [r for r in self.all() if r.company_id == company_id]

    def get(self, report_id: int) -> Optional[Report]:
        return self._reports.get(report_id)

    def can_edit(self, report_id: int) -> bool:
        report = self.get(report_id)
        return report is not None and not report.is_approved

    # -- helpers -----------------------------------------------------------

    def _record(self, user_id: Optional[int], action: str, report_id: int, details: str = "") -> None:
        if self.activity is not None:
            self.activity.record(user_id, action, "report", report_id, details)

    def _patch(self, report_id: int, fields: dict[str, Any]) -> Report:
        rows = self.store.patch_rows("reports", RowPatch(id=report_id, fields=fields))
        report = decode_report(first_row(rows, "reports"))
        self._reports[report.id] = report
        return report

    @staticmethod
    def _columns(fields: Mapping[str, Any]) -> dict[str, Any]:
        return {_REPORT_COLUMNS.get(k, k): v for k, v in fields.items()}

    # -- lifecycle ---------------------------------------------------------

    def submit(
        self,
        company_id: int,
        financials: Financials,
        author: Union[User, str, None],
        report_date: Optional[date] = None,
    ) -> Report:
        """
        Append a report and propagate its figures to the company snapshot.

        The snapshot patch is only sent after the report insert returned.

        Raises
        ------
        KeyError
            If the company is not in the registry.
        StorageError
            If either write fails. A failed snapshot patch leaves the
            inserted report in place.
        """
        if self.registry.get(company_id) is None:
            raise KeyError(f"Unknown company id: {company_id}")

        fields = supplied_fields(financials)
        extra = asdict(financials) if isinstance(financials, ReportInput) else dict(financials)
        comment = extra.get("comment") or ""
        source = extra.get("source") or "Manuell"
        author_name, author_id = _author(author)
        when = (report_date or _today()).isoformat()

        row = {
            "company_id": company_id,
            "submitted_by_user_id": author_id,
            "author_name": author_name,
            "report_date": when,
            "comment": comment,
            "source": source,
            "status": "submitted",
            **self._columns(fields),
        }
        inserted = self.store.insert_rows("reports", [row])
        report = decode_report(first_row(inserted, "reports"))
        self._reports[report.id] = report

        snapshot = {_SNAPSHOT_FIELDS.get(k, k): v for k, v in fields.items()}
        snapshot.update(
            {"last_report_date": when, "last_report_by": author_name, "comment": comment}
        )
        self.registry.apply_snapshot(company_id, snapshot)

        self._record(author_id, "report.submit", report.id, f"company {company_id}")
        return report

    def edit(
        self,
        report_id: int,
        financials: Financials,
        editor: Optional[User] = None,
    ) -> Optional[Report]:
        """
        Change the figures of an unapproved report.

        Returns the updated report, the unchanged report when it is
        approved, or None when it does not exist.
        """
        report = self.get(report_id)
        if report is None:
            logger.warning("Cannot edit report %s: not found", report_id)
            return None
        if report.is_approved:
            logger.warning("Cannot edit report %s: report is approved", report_id)
            return report

        fields = self._columns(supplied_fields(financials))
        extra = asdict(financials) if isinstance(financials, ReportInput) else dict(financials)
        for key in ("comment", "source"):
            if extra.get(key) is not None:
                fields[key] = extra[key]
        if not fields:
            return report

        updated = self._patch(report_id, fields)
        self._record(editor.id if editor else None, "report.edit", report_id)
        return updated

    def approve(self, report_id: int, approver: User) -> Optional[Report]:
        """Approve a report (controllers only). Missing reports are a logged no-op."""
        if not approver.is_controller:
            logger.warning("User %s may not approve reports", approver.id)
            return self.get(report_id)
        report = self.get(report_id)
        if report is None:
            logger.warning("Cannot approve report %s: not found", report_id)
            return None

        updated = self._patch(
            report_id,
            {
                "status": "approved",
                "approved_by_user_id": approver.id,
                "approved_at": _now_iso(),
            },
        )
        self._record(approver.id, "report.approve", report_id)
        return updated

    def unlock(self, report_id: int, controller: User) -> Optional[Report]:
        """Return an approved report to ``submitted`` (controllers only)."""
        if not controller.is_controller:
            logger.warning("User %s may not unlock reports", controller.id)
            return self.get(report_id)
        report = self.get(report_id)
        if report is None:
            logger.warning("Cannot unlock report %s: not found", report_id)
            return None

        updated = self._patch(
            report_id,
            {"status": "submitted", "approved_at": None, "approved_by_user_id": None},
        )
        self._record(controller.id, "report.unlock", report_id)
        return updated

    def delete(self, report_id: int, user: Optional[User] = None) -> bool:
        """
        Delete an unapproved report.

        Approved reports are refused (logged, returns False).
        """
        report = self.get(report_id)
        if report is None:
            logger.warning("Cannot delete report %s: not found", report_id)
            return False
        if report.is_approved:
            logger.warning("Cannot delete report %s: report is approved", report_id)
            return False

        self.store.delete_rows("reports", [report_id])
        del self._reports[report_id]
        self._record(user.id if user else None, "report.delete", report_id)
        return True
