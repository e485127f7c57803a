# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Storage boundary for KonsernKontroll.

The core consumes persistence only through four operations against a
generic tabular resource addressed by table name:

- ``fetch_rows(table, filter)``   -> list of row dicts
- ``insert_rows(table, records)`` -> list of inserted row dicts (with ids)
- ``patch_rows(table, patches)``  -> list of updated row dicts
- ``delete_rows(table, ids)``     -> number of deleted rows

Every implementation reports failures by raising ``StorageError`` with an
HTTP-like status and a message. Callers must never swallow such an error
coming from a financial write.

Implementations
---------------
- ``SQLiteTableStore``: reference backend on a local SQLite file.
- ``MemoryTableStore``: dict-backed store for demo mode and tests.
- ``RestTableStore`` (in ``rest.py``): client for the hosted REST resource.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) groups             - one row per holding company (tenant).
2) companies          - subsidiaries with their cached financial snapshot:
                        result_ytd, liquidity, receivables, ...,
                        budget_total, budget_mode,
                        budget_months (JSON text, 12 numbers),
                        last_report_date, last_report_by, current_comment.
3) users              - controllers and leaders. ``company_id`` is the
                        legacy single-company pointer.
4) user_company_access - many-to-many leader -> company grants.
5) reports            - append-only reporting log. Financial columns are
                        nullable: NULL means "not reported".
6) forecasts          - expected receivables/payables per (company, month).
7) logs               - activity log written by the best-effort side channel.

Deleting a company that still has reports fails with status 409.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- One connection per operation, foreign keys explicitly enabled.
- Lists and dicts are stored as JSON text; readers must decode them (the
  reconciliation layer does so for ``budget_months``).
- Timestamps are ISO-8601 text (UTC).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)

TABLES: tuple[str, ...] = (
    "groups",
    "companies",
    "users",
    "user_company_access",
    "reports",
    "forecasts",
    "logs",
)

# ---------------------------------------------------------------------------
# Dataclasses & errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for the SQLite backend.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class RowPatch:
    """Partial update of one row: ``fields`` are written to row ``id``."""

    id: int
    fields: dict[str, Any] = field(default_factory=dict)


class StorageError(Exception):
    """A storage operation failed (HTTP-like ``status`` plus message)."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"{status}: {message}")


Filter = Mapping[str, Any]
PatchInput = Union[RowPatch, Mapping[str, Any], Iterable[Union[RowPatch, Mapping[str, Any]]]]


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def as_records(records: Any) -> list[dict[str, Any]]:
    if isinstance(records, Mapping):
        return [dict(records)]
    return [dict(r) for r in records]


def as_patches(patches: PatchInput) -> list[RowPatch]:
    if isinstance(patches, (RowPatch, Mapping)):
        patches = [patches]
    out: list[RowPatch] = []
    for p in patches:
        if isinstance(p, RowPatch):
            out.append(p)
        elif "fields" in p:
            out.append(RowPatch(id=p["id"], fields=dict(p["fields"])))
        else:
            rest = {k: v for k, v in p.items() if k != "id"}
            out.append(RowPatch(id=p["id"], fields=rest))
    return out


def as_ids(ids: Any) -> list[Any]:
    if isinstance(ids, (list, tuple, set)):
        return list(ids)
    return [ids]


def first_row(rows: list[dict[str, Any]], table: str) -> dict[str, Any]:
    """Return the first row of a write response, or fail when it is empty."""
    if not rows:
        raise StorageError(502, f"Write to {table!r} returned no rows")
    return rows[0]


def row_matches(row: Mapping[str, Any], filters: Filter | None) -> bool:
    if not filters:
        return True
    for key, expected in filters.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class TableStore(ABC):
    """Generic tabular resource consumed by the core."""

    @abstractmethod
    def fetch_rows(self, table: str, filters: Filter | None = None) -> list[dict[str, Any]]:
        """Return all rows of ``table`` matching the equality ``filters``."""

    @abstractmethod
    def insert_rows(self, table: str, records: Any) -> list[dict[str, Any]]:
        """Insert one record or a list of records; return the inserted rows."""

    @abstractmethod
    def patch_rows(self, table: str, patches: PatchInput) -> list[dict[str, Any]]:
        """Apply one or more ``RowPatch`` updates; return the updated rows."""

    @abstractmethod
    def delete_rows(self, table: str, ids: Any) -> int:
        """Delete rows by id; return the number of rows deleted."""


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS groups (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        name        TEXT    NOT NULL,
        logo_url    TEXT,
        created_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS companies (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id                INTEGER NOT NULL,
        name                    TEXT    NOT NULL,
        full_name               TEXT,
        manager                 TEXT    NOT NULL DEFAULT '',
        sort_order              INTEGER DEFAULT 0,

        revenue                 INTEGER NOT NULL DEFAULT 0,
        expenses                INTEGER NOT NULL DEFAULT 0,
        result_ytd              INTEGER NOT NULL DEFAULT 0,
        pnl_date                TEXT,

        budget_total            INTEGER NOT NULL DEFAULT 0,
        budget_mode             TEXT    DEFAULT 'annual',
        budget_months           TEXT,   -- JSON array of 12 numbers

        liquidity               INTEGER NOT NULL DEFAULT 0,
        receivables             INTEGER NOT NULL DEFAULT 0,
        accounts_payable        INTEGER NOT NULL DEFAULT 0,
        public_fees             INTEGER NOT NULL DEFAULT 0,
        salary_expenses         INTEGER NOT NULL DEFAULT 0,
        liquidity_date          TEXT,
        receivables_date        TEXT,
        accounts_payable_date   TEXT,
        public_fees_date        TEXT,
        salary_expenses_date    TEXT,

        trend_history           REAL    DEFAULT 0,
        prev_liquidity          INTEGER,
        prev_deviation          REAL,

        last_report_date        TEXT,
        last_report_by          TEXT,
        current_comment         TEXT,

        created_at              TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at              TEXT,

        FOREIGN KEY (group_id) REFERENCES groups(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        auth_id     TEXT,
        email       TEXT    NOT NULL,
        password    TEXT,
        full_name   TEXT,
        role        TEXT    NOT NULL DEFAULT 'leader',
        group_id    INTEGER NOT NULL,
        company_id  INTEGER,   -- legacy single-company pointer
        created_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,

        FOREIGN KEY (group_id) REFERENCES groups(id),
        FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE SET NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS user_company_access (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     INTEGER NOT NULL,
        company_id  INTEGER NOT NULL,

        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS reports (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        company_id              INTEGER NOT NULL,
        submitted_by_user_id    INTEGER,
        author_name             TEXT,

        revenue                 INTEGER,
        expenses                INTEGER,
        result_ytd              INTEGER,
        liquidity               INTEGER,
        receivables             INTEGER,
        accounts_payable        INTEGER,
        public_fees             INTEGER,
        salary_expenses         INTEGER,

        pnl_date                TEXT,
        liquidity_date          TEXT,
        receivables_date        TEXT,
        accounts_payable_date   TEXT,
        public_fees_date        TEXT,
        salary_expenses_date    TEXT,

        comment                 TEXT,
        source                  TEXT    DEFAULT 'Manuell',
        status                  TEXT    DEFAULT 'submitted',
        -- 'draft' | 'submitted' | 'approved'

        approved_by_user_id     INTEGER,
        approved_at             TEXT,
        report_date             TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,

        FOREIGN KEY (company_id) REFERENCES companies(id),
        FOREIGN KEY (submitted_by_user_id) REFERENCES users(id) ON DELETE SET NULL,
        FOREIGN KEY (approved_by_user_id) REFERENCES users(id) ON DELETE SET NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS forecasts (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        company_id              INTEGER NOT NULL,
        month                   TEXT    NOT NULL,  -- 'YYYY-MM'
        estimated_receivables   INTEGER DEFAULT 0,
        estimated_payables      INTEGER DEFAULT 0,
        updated_at              TEXT,

        FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS logs (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     INTEGER,
        action      TEXT    NOT NULL,
        entity      TEXT,
        entity_id   INTEGER,
        details     TEXT,
        created_at  TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_reports_company
        ON reports(company_id);
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_forecasts_company_month
        ON forecasts(company_id, month);
    """,
)


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _to_sql_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(list(value) if isinstance(value, tuple) else value)
    if isinstance(value, bool):
        return int(value)
    return value


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if it does not exist.
    - Creates all tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    _ensure_sqlite(cfg)
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(cfg.path)
    try:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


class SQLiteTableStore(TableStore):
    """
    ``TableStore`` backed by a local SQLite file.

    Table and column names are validated against the live schema before any
    SQL is built, so filters and records can only reference real columns.
    """

    def __init__(self, cfg: DatabaseConfig, *, initialize: bool = True):
        _ensure_sqlite(cfg)
        self.cfg = cfg
        if initialize:
            init_database(cfg)

    # -- helpers -----------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """
        Open a SQLite connection with foreign keys enabled.

        The caller is responsible for closing the connection.
        """
        conn = sqlite3.connect(self.cfg.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
        if table not in TABLES:
            raise StorageError(404, f"Unknown table: {table!r}")
        cur = conn.execute(f"PRAGMA table_info({table});")
        return {row[1] for row in cur.fetchall()}

    @staticmethod
    def _check_columns(table: str, names: Iterable[str], columns: set[str]) -> None:
        unknown = sorted(set(names) - columns)
        if unknown:
            raise StorageError(
                400, f"Unknown column(s) for table {table!r}: {', '.join(unknown)}"
            )

    @staticmethod
    def _select_by_ids(
        conn: sqlite3.Connection, table: str, ids: list[Any]
    ) -> list[dict[str, Any]]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        cur = conn.execute(
            f"SELECT * FROM {table} WHERE id IN ({placeholders}) ORDER BY id;",
            ids,
        )
        return [dict(row) for row in cur.fetchall()]

    # -- TableStore API ----------------------------------------------------

    def fetch_rows(self, table: str, filters: Filter | None = None) -> list[dict[str, Any]]:
        conn = self._connect()
        try:
            columns = self._columns(conn, table)
            filters = dict(filters or {})
            self._check_columns(table, filters, columns)

            clauses: list[str] = []
            params: list[Any] = []
            for key, value in filters.items():
                if isinstance(value, (list, tuple, set)):
                    values = list(value)
                    if not values:
                        return []
                    clauses.append(f"{key} IN ({', '.join('?' for _ in values)})")
                    params.extend(values)
                elif value is None:
                    clauses.append(f"{key} IS NULL")
                else:
                    clauses.append(f"{key} = ?")
                    params.append(value)

            sql = f"SELECT * FROM {table}"
            if clauses:
                sql += " WHERE " + " AND ".join(clauses)
            sql += " ORDER BY id;"

            cur = conn.execute(sql, params)
            return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(500, f"Failed to fetch rows from {table!r}: {exc}") from exc
        finally:
            conn.close()

    def insert_rows(self, table: str, records: Any) -> list[dict[str, Any]]:
        rows = as_records(records)
        conn = self._connect()
        try:
            columns = self._columns(conn, table)
            inserted_ids: list[int] = []
            for record in rows:
                self._check_columns(table, record, columns)
                if not record:
                    cur = conn.execute(f"INSERT INTO {table} DEFAULT VALUES;")
                else:
                    names = list(record)
                    cur = conn.execute(
                        f"INSERT INTO {table} ({', '.join(names)}) "
                        f"VALUES ({', '.join('?' for _ in names)});",
                        [_to_sql_value(record[n]) for n in names],
                    )
                inserted_ids.append(cur.lastrowid)
            conn.commit()
            return self._select_by_ids(conn, table, inserted_ids)
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise StorageError(409, f"Insert into {table!r} rejected: {exc}") from exc
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(500, f"Failed to insert into {table!r}: {exc}") from exc
        finally:
            conn.close()

    def patch_rows(self, table: str, patches: PatchInput) -> list[dict[str, Any]]:
        updates = as_patches(patches)
        conn = self._connect()
        try:
            columns = self._columns(conn, table)
            touched: list[Any] = []
            for patch in updates:
                fields_ = {k: v for k, v in patch.fields.items() if k != "id"}
                self._check_columns(table, fields_, columns)
                if not fields_:
                    touched.append(patch.id)
                    continue
                assignments = ", ".join(f"{name} = ?" for name in fields_)
                cur = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?;",
                    [_to_sql_value(v) for v in fields_.values()] + [patch.id],
                )
                if cur.rowcount == 0:
                    raise StorageError(404, f"No row with id {patch.id} in {table!r}")
                touched.append(patch.id)
            conn.commit()
            return self._select_by_ids(conn, table, touched)
        except StorageError:
            conn.rollback()
            raise
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise StorageError(409, f"Update of {table!r} rejected: {exc}") from exc
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(500, f"Failed to update {table!r}: {exc}") from exc
        finally:
            conn.close()

    def delete_rows(self, table: str, ids: Any) -> int:
        id_list = as_ids(ids)
        if not id_list:
            return 0
        conn = self._connect()
        try:
            self._columns(conn, table)
            placeholders = ", ".join("?" for _ in id_list)
            cur = conn.execute(
                f"DELETE FROM {table} WHERE id IN ({placeholders});", id_list
            )
            conn.commit()
            return cur.rowcount
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise StorageError(
                409, f"Cannot delete from {table!r}: dependent rows exist ({exc})"
            ) from exc
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(500, f"Failed to delete from {table!r}: {exc}") from exc
        finally:
            conn.close()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


# (child table, foreign key column) pairs that block deleting a parent row.
_BLOCKING_DEPENDENTS: dict[str, tuple[tuple[str, str], ...]] = {
    "companies": (("reports", "company_id"),),
}


class MemoryTableStore(TableStore):
    """
    Dict-backed ``TableStore``.

    Rows are kept in insertion order and copied on the way in and out, so
    callers can never mutate stored rows by accident.
    """

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None):
        self._tables: dict[str, list[dict[str, Any]]] = {name: [] for name in TABLES}
        self._next_id: dict[str, int] = {name: 1 for name in TABLES}
        for name, rows in (tables or {}).items():
            self.insert_rows(name, list(rows))

    def _table(self, table: str) -> list[dict[str, Any]]:
        if table not in self._tables:
            raise StorageError(404, f"Unknown table: {table!r}")
        return self._tables[table]

    def fetch_rows(self, table: str, filters: Filter | None = None) -> list[dict[str, Any]]:
        return [dict(r) for r in self._table(table) if row_matches(r, filters)]

    def insert_rows(self, table: str, records: Any) -> list[dict[str, Any]]:
        rows = self._table(table)
        inserted: list[dict[str, Any]] = []
        for record in as_records(records):
            row = dict(record)
            if row.get("id") is None:
                row["id"] = self._next_id[table]
            self._next_id[table] = max(self._next_id[table], int(row["id"]) + 1)
            row.setdefault("created_at", _now_utc_iso())
            rows.append(row)
            inserted.append(dict(row))
        return inserted

    def patch_rows(self, table: str, patches: PatchInput) -> list[dict[str, Any]]:
        rows = self._table(table)
        updated: list[dict[str, Any]] = []
        for patch in as_patches(patches):
            row = next((r for r in rows if r.get("id") == patch.id), None)
            if row is None:
                raise StorageError(404, f"No row with id {patch.id} in {table!r}")
            row.update({k: v for k, v in patch.fields.items() if k != "id"})
            updated.append(dict(row))
        return updated

    def delete_rows(self, table: str, ids: Any) -> int:
        rows = self._table(table)
        id_list = as_ids(ids)
        for child, column in _BLOCKING_DEPENDENTS.get(table, ()):
            if any(r.get(column) in id_list for r in self._tables[child]):
                raise StorageError(
                    409, f"Cannot delete from {table!r}: dependent rows exist in {child!r}"
                )
        before = len(rows)
        rows[:] = [r for r in rows if r.get("id") not in id_list]
        return before - len(rows)
