# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
KonsernKontroll
---------------

A financial-reporting dashboard for holding-company structures. A
controller oversees the subsidiaries of a group; each subsidiary has one or
more leaders who submit periodic financial reports (revenue, result,
liquidity, receivables, payables) that the controller approves.

Main capabilities:
- normalization of stored monthly budgets into a canonical 12-month list,
- budget allocation from annual, quarterly or monthly figures,
- year-to-date budget targets ("month end" or pro-rated "today") and
  deviations,
- reconciliation of loosely-typed storage rows into a typed model,
- an append-only report ledger with an approve/unlock lifecycle that keeps
  each company's cached snapshot in sync,
- role-based company visibility and derived manager names,
- liquidity forecasts,
- SQLite, REST and in-memory storage backends.

KonsernKontroll separates computation (budget, ytd, reconcile),
configuration (TOML), storage (TableStore backends) and presentation
(views / CLI).


Version: 0.3.0

Usage:
    python -m konsernkontroll.cli --help
"""

__all__ = ["budget", "ytd", "reconcile", "ledger", "access", "views"]

__version__ = "0.3.0"
