# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for KonsernKontroll.

This module wires together the main building blocks of KonsernKontroll:

- configuration (storage backend, dashboard and display options),
- the application context (sign-in, company registry, report ledger,
  access resolver, forecasts),
- view helpers (dashboard, reports, risk matrix) and tabular rendering.

The CLI is intentionally thin: it does not implement financial logic
itself. It signs a user in, dispatches to the services of the application
context and renders their results.


Sign-in
-------
Every run acts on behalf of one user:

    --user REF      user id or external auth id
    --demo          use the seeded in-memory demo portfolio, signed in as
                    its controller (no configuration file needed)

Commands that change companies or users, and report approval/unlock, are
reserved for controllers.


Subcommands
-----------
- ``init``:
    Create the configured group and its first controller on a fresh
    database. Needs no ``--user`` and refuses to run once the group has
    users.

- ``dashboard`` (default):
    Visible companies with YTD result, budget and deviation. ``--sort``
    orders by result, deviation or liquidity; ``--control`` keeps only
    companies behind budget; ``--risk`` adds the liquidity/deviation
    risk matrix.

- ``companies list|add|update|delete|reorder|budget``
- ``reports list|submit|edit|approve|unlock|delete``
- ``users list|add|update|delete``
- ``forecast show|set``


Display modes
-------------
- ``table``: print DataFrames to stdout (``DataFrame.to_string``),
- ``csv``:   write timestamped CSV files to ``--output`` (``data/output``),
- ``both``:  do both.

Storage failures end the run with a one-line message and a non-zero exit
status.
"""

import argparse
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from . import __version__
from .access import bootstrap_group
from .config import DISPLAY_MODES, AppConfig, default_app_config, load_app_config
from .context import AppContext, create_store
from .models import BUDGET_MODES, REPORT_SOURCES, ROLES, ReportInput
from .storage import StorageError
from .views import (
    SORT_FIELDS,
    companies_to_dataframe,
    control_view,
    format_amount,
    portfolio_totals,
    reports_to_dataframe,
    risk_matrix,
    sort_companies,
)
from .ytd import YTD_MODES

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _add_financial_arguments(p: argparse.ArgumentParser) -> None:
    """Options shared by 'reports submit' and 'reports edit'."""
    for flag, help_text in (
        ("--revenue", "Revenue YTD."),
        ("--expenses", "Expenses YTD."),
        ("--result", "Result YTD (derived from revenue - expenses when both are given)."),
        ("--liquidity", "Liquidity."),
        ("--receivables", "Accounts receivable."),
        ("--accounts-payable", "Accounts payable."),
        ("--public-fees", "Public fees due."),
        ("--salary-expenses", "Salary expenses due."),
    ):
        p.add_argument(flag, type=float, help=help_text)
    for flag in (
        "--pnl-date",
        "--liquidity-date",
        "--receivables-date",
        "--accounts-payable-date",
        "--public-fees-date",
        "--salary-expenses-date",
    ):
        p.add_argument(flag, help="As-of date of the matching figure.")
    p.add_argument("--comment", help="Free-text comment.")
    p.add_argument("--source", choices=list(REPORT_SOURCES), help="Origin of the figures.")


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="konsernkontroll",
        description=(
            "KonsernKontroll - Group financial reporting dashboard. "
            "Tracks subsidiaries' results against budget, their reports "
            "and liquidity."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of konsernkontroll and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the TOML configuration file. "
            "If omitted, 'konsernkontroll_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "--demo",
        action="store_true",
        help="Run against the built-in demo portfolio as the demo controller.",
    )
    ap.add_argument(
        "--user",
        dest="user_ref",
        help="User id or auth id to sign in as (required unless --demo).",
    )
    ap.add_argument(
        "--ytd-mode",
        dest="ytd_mode",
        choices=list(YTD_MODES),
        help=(
            "Override dashboard.ytd_mode: 'month_end' counts fully elapsed "
            "months only, 'today' pro-rates the current month."
        ),
    )
    ap.add_argument(
        "--reference-date",
        dest="reference_date",
        help="Compute YTD figures as of this date (YYYY-MM-DD) instead of today.",
    )
    ap.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=list(DISPLAY_MODES),
        help=(
            "Override the display.mode setting from the configuration file. "
            "'table' prints results to stdout, "
            "'csv' writes CSV files only, "
            "'both' does both."
        ),
    )
    ap.add_argument(
        "--output",
        dest="output_dir",
        help=(
            "Output directory for CSV files when display mode includes 'csv'. "
            "If omitted, 'data/output' is used."
        ),
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Override logging.level from the configuration file.",
    )

    subparsers = ap.add_subparsers(dest="command", metavar="command")

    # ------------------------------------------------------------------
    # init
    # ------------------------------------------------------------------
    init = subparsers.add_parser(
        "init", help="Create the configured group and its first controller."
    )
    init.add_argument("--group-name", dest="group_name", required=True)
    init.add_argument("--email", required=True)
    init.add_argument("--full-name", dest="full_name", default="")
    init.add_argument("--password", default="")
    init.add_argument("--auth-id", dest="auth_id")

    # ------------------------------------------------------------------
    # dashboard
    # ------------------------------------------------------------------
    dashboard = subparsers.add_parser("dashboard", help="Show the company dashboard.")
    dashboard.add_argument("--sort", choices=list(SORT_FIELDS), default="default")
    dashboard.add_argument(
        "--control",
        action="store_true",
        help="Only show companies with a negative deviation.",
    )
    dashboard.add_argument(
        "--risk",
        action="store_true",
        help="Also show the liquidity/deviation risk matrix.",
    )

    # ------------------------------------------------------------------
    # companies
    # ------------------------------------------------------------------
    companies = subparsers.add_parser("companies", help="Manage companies (controller).")
    companies_sub = companies.add_subparsers(dest="companies_command", metavar="companies-command")

    companies_sub.add_parser("list", help="List visible companies.")

    c_add = companies_sub.add_parser("add", help="Add a company.")
    c_add.add_argument("--name", required=True, help="Short code shown on the dashboard.")
    c_add.add_argument("--full-name", help="Full legal name.")
    c_add.add_argument("--budget-total", type=float, default=0.0, help="Annual budget.")
    c_add.add_argument("--result-ytd", type=float, default=0.0)
    c_add.add_argument("--liquidity", type=float, default=0.0)

    c_update = companies_sub.add_parser("update", help="Update company fields.")
    c_update.add_argument("company_id", type=int)
    c_update.add_argument("--name")
    c_update.add_argument("--full-name")
    c_update.add_argument("--revenue", type=float)
    c_update.add_argument("--expenses", type=float)
    c_update.add_argument("--result-ytd", type=float, help="Manual override of the result.")
    c_update.add_argument("--liquidity", type=float)
    c_update.add_argument("--receivables", type=float)
    c_update.add_argument("--accounts-payable", type=float)
    c_update.add_argument("--comment")

    c_delete = companies_sub.add_parser("delete", help="Delete a company without reports.")
    c_delete.add_argument("company_id", type=int)

    c_reorder = companies_sub.add_parser("reorder", help="Set the display order.")
    c_reorder.add_argument("company_ids", type=int, nargs="+")

    c_budget = companies_sub.add_parser("budget", help="Set a company's budget.")
    c_budget.add_argument("company_id", type=int)
    c_budget.add_argument("--mode", choices=list(BUDGET_MODES), default="annual")
    c_budget.add_argument(
        "values",
        type=float,
        nargs="+",
        help="1 annual figure, 4 quarterly figures or 12 monthly figures.",
    )

    # ------------------------------------------------------------------
    # reports
    # ------------------------------------------------------------------
    reports = subparsers.add_parser("reports", help="Submit and review reports.")
    reports_sub = reports.add_subparsers(dest="reports_command", metavar="reports-command")

    r_list = reports_sub.add_parser("list", help="List a company's reports.")
    r_list.add_argument("company_id", type=int)

    r_submit = reports_sub.add_parser("submit", help="Submit a report for a company.")
    r_submit.add_argument("company_id", type=int)
    _add_financial_arguments(r_submit)

    r_edit = reports_sub.add_parser("edit", help="Edit an unapproved report.")
    r_edit.add_argument("report_id", type=int)
    _add_financial_arguments(r_edit)

    for name, help_text in (
        ("approve", "Approve a report (controller)."),
        ("unlock", "Unlock an approved report (controller)."),
        ("delete", "Delete an unapproved report."),
    ):
        p = reports_sub.add_parser(name, help=help_text)
        p.add_argument("report_id", type=int)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    users = subparsers.add_parser("users", help="Manage users (controller).")
    users_sub = users.add_subparsers(dest="users_command", metavar="users-command")

    users_sub.add_parser("list", help="List the group's users.")

    u_add = users_sub.add_parser("add", help="Add a user.")
    u_add.add_argument("--email", required=True)
    u_add.add_argument("--full-name", required=True)
    u_add.add_argument("--role", choices=list(ROLES), default="leader")
    u_add.add_argument("--password", default="")
    u_add.add_argument(
        "--company",
        dest="company_ids",
        type=int,
        action="append",
        default=[],
        help="Grant access to a company (repeatable).",
    )

    u_update = users_sub.add_parser("update", help="Update a user.")
    u_update.add_argument("user_id", type=int)
    u_update.add_argument("--email")
    u_update.add_argument("--full-name")
    u_update.add_argument("--role", choices=list(ROLES))
    u_update.add_argument("--password")
    u_update.add_argument(
        "--company",
        dest="company_ids",
        type=int,
        action="append",
        help="Replace the access grants (repeatable).",
    )

    u_delete = users_sub.add_parser("delete", help="Delete a user.")
    u_delete.add_argument("user_id", type=int)

    # ------------------------------------------------------------------
    # forecast
    # ------------------------------------------------------------------
    forecast = subparsers.add_parser("forecast", help="Liquidity forecasts.")
    forecast_sub = forecast.add_subparsers(dest="forecast_command", metavar="forecast-command")

    f_show = forecast_sub.add_parser("show", help="Show the liquidity projection.")
    f_show.add_argument("company_id", type=int)

    f_set = forecast_sub.add_parser("set", help="Save a monthly forecast.")
    f_set.add_argument("company_id", type=int)
    f_set.add_argument("month", help="Month as YYYY-MM.")
    f_set.add_argument("--receivables", type=float, default=0.0)
    f_set.add_argument("--payables", type=float, default=0.0)

    return ap


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an optional CLI date argument (YYYY-MM-DD).

    Raises
    ------
    SystemExit
        If the date format is invalid.
    """
    if value is None:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}. Expected YYYY-MM-DD."
        raise SystemExit(msg) from exc


def _require_controller(ctx: AppContext) -> None:
    if not ctx.user.is_controller:
        raise SystemExit("This command requires the controller role.")


def _require_visible(ctx: AppContext, company_id: int) -> None:
    if not ctx.can_see(company_id):
        raise SystemExit(f"Company {company_id} not found or not accessible.")


def _render(df: pd.DataFrame, title: str, stem: str, args: argparse.Namespace, ctx: AppContext) -> None:
    """Print and/or export one DataFrame according to the display mode."""
    display_mode = args.display_mode or ctx.config.display_mode

    if display_mode in {"table", "both"}:
        print()
        print(f"=== {title} ===")
        if df.empty:
            print("(no rows)")
        else:
            print(df.to_string(index=False))

    if display_mode in {"csv", "both"}:
        output_dir = Path(args.output_dir) if args.output_dir else Path("data/output")
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        path = output_dir / f"{stem}_{timestamp}.csv"
        df.to_csv(path, index=False)
        print(f"Wrote {path} ({len(df)} rows)")


def _financials_from_args(args: argparse.Namespace) -> ReportInput:
    return ReportInput(
        revenue=args.revenue,
        expenses=args.expenses,
        result=args.result,
        liquidity=args.liquidity,
        receivables=args.receivables,
        accounts_payable=args.accounts_payable,
        public_fees=args.public_fees,
        salary_expenses=args.salary_expenses,
        pnl_date=args.pnl_date,
        liquidity_date=args.liquidity_date,
        receivables_date=args.receivables_date,
        accounts_payable_date=args.accounts_payable_date,
        public_fees_date=args.public_fees_date,
        salary_expenses_date=args.salary_expenses_date,
        comment=args.comment,
        source=args.source,
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_dashboard(args: argparse.Namespace, ctx: AppContext) -> None:
    """
    Handle the 'dashboard' subcommand (also the default command).

    Computes the visible companies for the current YTD mode and reference
    date, applies the control filter and sort order, prints the group
    totals and renders the table.
    """
    computed = ctx.dashboard()
    if getattr(args, "control", False):
        computed = control_view(computed)
    computed = sort_companies(computed, getattr(args, "sort", "default"))

    totals = portfolio_totals(computed)
    print(f"{ctx.group_name} | {ctx.user.full_name or ctx.user.email} ({ctx.user.role})")
    print(
        f"Result YTD: {format_amount(totals.total_result_ytd)} | "
        f"Budget YTD: {format_amount(totals.total_budget_ytd)} | "
        f"Annual budget: {format_amount(totals.total_annual_budget)} | "
        f"Liquidity: {format_amount(totals.total_liquidity)} | "
        f"YTD mode: {ctx.ytd_mode}"
    )

    df = companies_to_dataframe(
        computed,
        decimals=ctx.config.decimals,
        danger_threshold=ctx.config.thresholds.danger_deviation,
    )
    _render(df, "Dashboard", "dashboard", args, ctx)

    if getattr(args, "risk", False):
        _render(
            risk_matrix(computed, ctx.config.thresholds.low_liquidity),
            "Risk matrix",
            "risk_matrix",
            args,
            ctx,
        )


def _handle_companies(args: argparse.Namespace, ctx: AppContext) -> None:
    """Dispatch function for the 'companies' subcommands."""
    subcmd = getattr(args, "companies_command", None)

    if subcmd == "list" or subcmd is None:
        df = companies_to_dataframe(ctx.dashboard(), decimals=ctx.config.decimals)
        _render(df, "Companies", "companies", args, ctx)
        return

    _require_controller(ctx)

    if subcmd == "add":
        company = ctx.registry.add(
            {
                "name": args.name,
                "full_name": args.full_name or args.name,
                "budget_total": args.budget_total,
                "result_ytd": args.result_ytd,
                "liquidity": args.liquidity,
            }
        )
        ctx.access.sync_manager_names([company.id])
        print(f"Added company #{company.id} {company.name}.")
    elif subcmd == "update":
        fields: dict[str, Any] = {
            key: getattr(args, key)
            for key in (
                "name",
                "full_name",
                "revenue",
                "expenses",
                "result_ytd",
                "liquidity",
                "receivables",
                "accounts_payable",
                "comment",
            )
            if getattr(args, key) is not None
        }
        if not fields:
            raise SystemExit("Nothing to update: provide at least one field option.")
        _require_visible(ctx, args.company_id)
        company = ctx.registry.update(args.company_id, fields)
        print(f"Updated company #{company.id} ({', '.join(sorted(fields))}).")
    elif subcmd == "delete":
        _require_visible(ctx, args.company_id)
        try:
            deleted = ctx.registry.delete(args.company_id)
        except StorageError as exc:
            if exc.status == 409:
                raise SystemExit(
                    f"Company {args.company_id} still has reports and cannot be deleted."
                ) from exc
            raise
        print(f"Deleted company #{args.company_id}." if deleted else "No company deleted.")
    elif subcmd == "reorder":
        ordered = ctx.registry.reorder(args.company_ids)
        print("New order: " + ", ".join(c.name for c in ordered))
    elif subcmd == "budget":
        _require_visible(ctx, args.company_id)
        company = ctx.registry.set_budget(args.company_id, args.mode, args.values)
        months = ", ".join(f"{m:.0f}" for m in company.budget_months)
        print(f"Budget of {company.name}: {company.budget_total:.0f} ({company.budget_mode})")
        print(f"Months: {months}")


def _handle_reports(args: argparse.Namespace, ctx: AppContext) -> None:
    """Dispatch function for the 'reports' subcommands."""
    subcmd = getattr(args, "reports_command", None)
    ledger = ctx.ledger

    if subcmd == "list":
        _require_visible(ctx, args.company_id)
        df = reports_to_dataframe(ledger.reports_for(args.company_id))
        _render(df, f"Reports of company #{args.company_id}", "reports", args, ctx)
    elif subcmd == "submit":
        _require_visible(ctx, args.company_id)
        report = ledger.submit(args.company_id, _financials_from_args(args), ctx.user)
        print(f"Submitted report #{report.id} for company #{args.company_id}.")
    elif subcmd == "edit":
        report = ledger.get(args.report_id)
        if report is not None:
            _require_visible(ctx, report.company_id)
        if not ledger.can_edit(args.report_id):
            raise SystemExit(f"Report {args.report_id} does not exist or is approved.")
        ledger.edit(args.report_id, _financials_from_args(args), editor=ctx.user)
        print(f"Updated report #{args.report_id}.")
    elif subcmd in {"approve", "unlock"}:
        _require_controller(ctx)
        action = ledger.approve if subcmd == "approve" else ledger.unlock
        report = action(args.report_id, ctx.user)
        if report is None:
            raise SystemExit(f"Report {args.report_id} not found.")
        print(f"Report #{report.id} is now {report.status}.")
    elif subcmd == "delete":
        report = ledger.get(args.report_id)
        if report is not None:
            _require_visible(ctx, report.company_id)
        if not ledger.delete(args.report_id, ctx.user):
            raise SystemExit(f"Report {args.report_id} does not exist or is approved.")
        print(f"Deleted report #{args.report_id}.")
    else:
        print(
            "No reports subcommand specified. Available subcommands are: "
            "'list', 'submit', 'edit', 'approve', 'unlock', 'delete'."
        )


def _handle_users(args: argparse.Namespace, ctx: AppContext) -> None:
    """Dispatch function for the 'users' subcommands."""
    _require_controller(ctx)
    subcmd = getattr(args, "users_command", None)
    access = ctx.access

    if subcmd == "list" or subcmd is None:
        df = pd.DataFrame(
            [
                {
                    "id": u.id,
                    "email": u.email,
                    "full_name": u.full_name,
                    "role": u.role,
                    "companies": ", ".join(str(c) for c in u.company_ids),
                    "legacy_company": u.company_id,
                }
                for u in access.users
            ],
            columns=["id", "email", "full_name", "role", "companies", "legacy_company"],
        )
        _render(df, "Users", "users", args, ctx)
    elif subcmd == "add":
        user = access.add_user(
            email=args.email,
            full_name=args.full_name,
            role=args.role,
            password=args.password,
            company_ids=args.company_ids,
        )
        print(f"Added user #{user.id} {user.email} ({user.role}).")
    elif subcmd == "update":
        try:
            user = access.update_user(
                args.user_id,
                email=args.email,
                full_name=args.full_name,
                role=args.role,
                password=args.password,
                company_ids=args.company_ids,
            )
        except KeyError as exc:
            raise SystemExit(f"User {args.user_id} not found.") from exc
        print(f"Updated user #{user.id}.")
    elif subcmd == "delete":
        if not access.delete_user(args.user_id):
            raise SystemExit(f"User {args.user_id} not found.")
        print(f"Deleted user #{args.user_id}.")


def _handle_init(args: argparse.Namespace, config: AppConfig) -> None:
    """Create the configured group and its first controller."""
    store = create_store(config)
    try:
        user = bootstrap_group(
            store,
            config.group_id,
            args.group_name,
            args.email,
            full_name=args.full_name,
            password=args.password,
            auth_id=args.auth_id,
        )
    except StorageError as exc:
        raise SystemExit(f"Storage error: {exc}") from exc
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    print(
        f"Initialized group #{config.group_id} ({args.group_name}) "
        f"with controller #{user.id} {user.email}."
    )


def _handle_forecast(args: argparse.Namespace, ctx: AppContext) -> None:
    """Dispatch function for the 'forecast' subcommands."""
    subcmd = getattr(args, "forecast_command", None)
    if subcmd is None:
        print("No forecast subcommand specified. Available subcommands are: 'show', 'set'.")
        return

    _require_visible(ctx, args.company_id)
    company = ctx.registry.get(args.company_id)

    if subcmd == "set":
        try:
            forecast = ctx.forecasts.upsert(
                args.company_id, args.month, args.receivables, args.payables
            )
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        print(f"Saved forecast for company #{forecast.company_id}, {forecast.month}.")
    else:
        df = ctx.forecasts.project_liquidity(company)
        _render(df, f"Liquidity projection for {company.name}", "forecast", args, ctx)


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the KonsernKontroll CLI.

    This function parses command-line arguments, loads the configuration
    (or the demo defaults), configures logging, signs the user in through
    an ``AppContext`` and dispatches to the requested subcommand. The
    dashboard is rendered when no subcommand is given.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"konsernkontroll version {__version__}")
        return

    # 1) Configuration
    if args.demo and not args.config_path:
        config = default_app_config()
    else:
        try:
            config = load_app_config(args.config_path)
        except (FileNotFoundError, ValueError) as exc:
            raise SystemExit(f"Configuration error: {exc}") from exc

    logging.basicConfig(
        level=args.log_level or config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Storage backend: %s", "memory (demo)" if args.demo else config.storage_backend)

    if args.command == "init":
        if args.demo:
            parser.error("init cannot be combined with --demo.")
        _handle_init(args, config)
        return

    if not args.demo and not args.user_ref:
        parser.error("--user is required unless --demo is given.")
    reference_date = _parse_optional_date(args.reference_date)

    # 2) Sign in
    try:
        if args.demo:
            ctx = AppContext.demo(config)
        else:
            ctx = AppContext.from_config(config)
            ctx.start(args.user_ref)
    except StorageError as exc:
        raise SystemExit(f"Storage error: {exc}") from exc

    if ctx.state != "ready":
        ctx.close()
        raise SystemExit(ctx.error_message or "Sign-in failed.")

    # 3) Dashboard options
    if args.ytd_mode:
        ctx.ytd_mode = args.ytd_mode
    if reference_date is not None:
        ctx.reference_date = reference_date

    # 4) Dispatch
    handlers = {
        "companies": _handle_companies,
        "reports": _handle_reports,
        "users": _handle_users,
        "forecast": _handle_forecast,
    }
    handler = handlers.get(args.command, _handle_dashboard)
    try:
        handler(args, ctx)
    except StorageError as exc:
        raise SystemExit(f"Storage error: {exc}") from exc
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
