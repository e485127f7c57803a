# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Application context.

``AppContext`` is built once at startup and handed to every user-facing
layer. It owns the storage backend, the signed-in user, and the services
working on the user's group:

- ``registry``  (CompanyRegistry) - canonical company list,
- ``ledger``    (ReportLedger)    - reporting logs,
- ``access``    (AccessResolver)  - visibility and user administration,
- ``forecasts`` (ForecastBook)    - liquidity forecasts.

Startup is an explicit state machine::

    unauthenticated --start()--> loading --ok--> ready
                                         --unknown user / storage error--> error

A background poller can re-run the full reload-and-reconcile pipeline at a
fixed interval. Results that arrive after ``close()`` are discarded.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Literal

from .access import AccessResolver
from .activity import ActivityLog
from .companies import CompanyRegistry
from .config import AppConfig, default_app_config
from .demo import DEMO_USER_AUTH_ID, build_demo_store
from .forecast import ForecastBook
from .ledger import ReportLedger
from .models import Company, ComputedCompanyData, User
from .reconcile import RecordDecodeError, decode_user, read_field
from .rest import RestTableStore
from .storage import SQLiteTableStore, StorageError, TableStore
from .ytd import YTD_MODES

logger = logging.getLogger(__name__)

ContextState = Literal["unauthenticated", "loading", "ready", "error"]
"""Lifecycle state of an ``AppContext``."""

DEFAULT_GROUP_NAME = "My group"


def create_store(config: AppConfig) -> TableStore:
    """Instantiate the storage backend selected in the configuration."""
    if config.storage_backend == "rest":
        return RestTableStore(config.rest)
    if config.storage_backend == "memory":
        return build_demo_store()
    return SQLiteTableStore(config.database)


class AppContext:
    """Explicit application state for one signed-in user."""

    def __init__(
        self,
        config: AppConfig,
        store: TableStore,
        activity: ActivityLog | None = None,
    ):
        self.config = config
        self.store = store
        self.activity = activity if activity is not None else ActivityLog(store)
        self.state: ContextState = "unauthenticated"
        self.error_message: str = ""

        self.user: User | None = None
        self.group_name: str = ""
        self.ytd_mode: str = config.dashboard.ytd_mode
        self.reference_date: date | None = config.dashboard.reference_date

        self.registry: CompanyRegistry | None = None
        self.ledger: ReportLedger | None = None
        self.access: AccessResolver | None = None
        self.forecasts = ForecastBook(store)

        self._closed = False
        self._stop_polling = threading.Event()
        self._poll_thread: threading.Thread | None = None

    # -- construction ------------------------------------------------------

    @classmethod
    def from_config(cls, config: AppConfig) -> "AppContext":
        return cls(config, create_store(config))

    @classmethod
    def demo(cls, config: AppConfig | None = None) -> "AppContext":
        """Context on the seeded demo portfolio, signed in as its controller."""
        ctx = cls(config or default_app_config(), build_demo_store())
        ctx.start(DEMO_USER_AUTH_ID)
        return ctx

    # -- startup -----------------------------------------------------------

    def _find_user_row(self, user_ref: int | str) -> dict | None:
        ref = str(user_ref).strip()
        if ref.isdigit():
            rows = self.store.fetch_rows("users", {"id": int(ref)})
        else:
            rows = self.store.fetch_rows("users", {"auth_id": ref})
        return rows[0] if rows else None

    def _fail(self, message: str) -> ContextState:
        self.state = "error"
        self.error_message = message
        logger.error(message)
        return self.state

    def start(self, user_ref: int | str) -> ContextState:
        """
        Sign in ``user_ref`` (user id or external auth id) and load the data.

        Returns the resulting state. An unknown user leaves the context in
        ``"error"``; a storage failure does too and is re-raised.
        """
        self.state = "loading"
        self.error_message = ""
        try:
            row = self._find_user_row(user_ref)
            if row is None:
                return self._fail(f"Unknown user: {user_ref}")
            try:
                found = decode_user(row)
            except RecordDecodeError as exc:
                return self._fail(str(exc))
            if found.group_id != self.config.group_id:
                return self._fail(
                    f"User {found.email or found.id} does not belong to group {self.config.group_id}"
                )

            group_rows = self.store.fetch_rows("groups", {"id": found.group_id})
            self.group_name = (
                str(read_field(group_rows[0], "name") or DEFAULT_GROUP_NAME)
                if group_rows
                else DEFAULT_GROUP_NAME
            )

            self.registry = CompanyRegistry(
                self.store, found.group_id, self.activity, actor_id=found.id
            )
            self.access = AccessResolver(
                self.store, self.registry, self.activity, actor_id=found.id
            )
            self.ledger = ReportLedger(self.store, self.registry, self.activity)

            self.registry.reload()
            self.access.load_users()
            self.user = self.access.get_user(found.id) or found
            self.ledger.load()
        except StorageError as exc:
            self._fail(f"Failed to load data: {exc}")
            raise

        self.state = "ready"
        logger.info("Signed in %s (%s) in group %s", self.user.email, self.user.role, self.group_name)
        return self.state

    def _require_ready(self) -> None:
        if self.state != "ready" or self.registry is None or self.user is None:
            raise RuntimeError(f"Application context is not ready (state: {self.state})")

    # -- dashboard ---------------------------------------------------------

    def visible_companies(self) -> list[Company]:
        self._require_ready()
        return self.access.visible_companies(self.user)

    def can_see(self, company_id: int) -> bool:
        return any(c.id == company_id for c in self.visible_companies())

    def set_ytd_mode(self, mode: str) -> list[ComputedCompanyData]:
        """Switch the YTD display mode and recompute the dashboard."""
        if mode not in YTD_MODES:
            raise ValueError(f"Invalid YTD mode: {mode!r} (expected one of {', '.join(YTD_MODES)})")
        self.ytd_mode = mode
        return self.dashboard()

    def dashboard(self, reference_date: date | None = None) -> list[ComputedCompanyData]:
        """Computed figures of the visible companies, in display order."""
        self._require_ready()
        ref = reference_date or self.reference_date
        return self.registry.computed(ref, self.ytd_mode, self.visible_companies())

    # -- reload & polling --------------------------------------------------

    def reload(self) -> list[Company] | None:
        """
        Re-read companies and users from storage.

        Returns None when the context was closed while the read was in
        flight; the result is then discarded.
        """
        self._require_ready()
        companies = self.registry.fetch()
        if self._closed:
            logger.debug("Context closed, discarding reload result")
            return None
        self.registry.replace_all(companies)
        self.access.load_users()
        self.user = self.access.get_user(self.user.id) or self.user
        return companies

    def _poll_loop(self, interval: float) -> None:
        logger.info(f"Polling started (interval: {interval}s)")
        while not self._stop_polling.wait(interval):
            try:
                self.reload()
            except Exception as e:
                logger.error(f"Error in poll loop: {e}")
        logger.info("Polling stopped")

    def start_polling(self, interval: float | None = None) -> None:
        """Reload in the background every ``interval`` seconds."""
        self._require_ready()
        if self._poll_thread is not None:
            logger.warning("Polling already running")
            return
        seconds = interval or self.config.dashboard.poll_interval_seconds
        self._stop_polling.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, args=(seconds,), name="reload-poller", daemon=True
        )
        self._poll_thread.start()

    def stop_polling(self) -> None:
        self._stop_polling.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=10)
            self._poll_thread = None

    @property
    def is_polling(self) -> bool:
        return self._poll_thread is not None

    def close(self) -> None:
        """Stop polling and flush the activity log."""
        self._closed = True
        self.stop_polling()
        self.activity.close()
