# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for KonsernKontroll.

This module is responsible for:
- loading the application configuration from a TOML file,
- picking up REST credentials from the environment,
- exposing typed dataclasses used by the rest of the application.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .rest import RestConfig
from .storage import DatabaseConfig
from .ytd import YTD_MODES

DEFAULT_CONFIG_FILE = "konsernkontroll_config.toml"

STORAGE_BACKENDS: tuple[str, ...] = ("sqlite", "rest", "memory")
DISPLAY_MODES: tuple[str, ...] = ("table", "csv", "both")

APP_ID_ENV = "KONSERNKONTROLL_APP_ID"
API_KEY_ENV = "KONSERNKONTROLL_API_KEY"


@dataclass(frozen=True)
class DashboardConfig:
    """
    Dashboard options.

    ``reference_date`` pins the date used for YTD calculations (useful for
    reproducible reports); None means "today".
    """

    ytd_mode: str = "month_end"
    poll_interval_seconds: float = 30.0
    reference_date: Optional[date] = None


@dataclass(frozen=True)
class ThresholdConfig:
    """Deviation and liquidity thresholds used by the status and risk views."""

    danger_deviation: float = -15.0
    low_liquidity: float = 300_000.0


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for KonsernKontroll.

    This aggregates:
    - the group (tenant) whose companies are loaded,
    - the storage backend and its settings (SQLite file or REST resource),
    - dashboard, threshold and display options,
    - the logging level.
    """

    group_id: int
    storage_backend: str
    database: DatabaseConfig
    rest: RestConfig
    dashboard: DashboardConfig
    thresholds: ThresholdConfig
    display_mode: str
    decimals: int
    log_level: str


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return section


def _choice(section: Mapping[str, Any], key: str, default: str, allowed: tuple[str, ...], name: str) -> str:
    value = str(section.get(key, default))
    if value not in allowed:
        raise ValueError(
            f"Invalid value for '{name}.{key}': {value!r}. "
            f"Expected one of: {', '.join(allowed)}."
        )
    return value


def _number(section: Mapping[str, Any], key: str, default: float, name: str) -> float:
    raw_value = section.get(key, default)
    try:
        return float(raw_value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid value for '{name}.{key}' in the configuration. Expected a number."
        ) from exc


def _parse_rest(section: Mapping[str, Any]) -> RestConfig:
    """Build the REST settings; credentials from the environment take precedence."""
    try:
        retries = int(section.get("retries", 3))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid value for 'rest.retries'. Expected an integer.") from exc

    return RestConfig(
        base_url=str(section.get("base_url", "")),
        app_id=os.environ.get(APP_ID_ENV) or str(section.get("app_id", "")),
        api_key=os.environ.get(API_KEY_ENV) or str(section.get("api_key", "")),
        timeout=_number(section, "timeout", 10.0, "rest"),
        retries=retries,
        retry_delay=_number(section, "retry_delay", 1.0, "rest"),
    )


def _parse_dashboard(section: Mapping[str, Any]) -> DashboardConfig:
    ref_raw = section.get("reference_date")
    reference_date: Optional[date] = None
    if ref_raw:
        try:
            reference_date = date.fromisoformat(str(ref_raw))
        except ValueError as exc:
            raise ValueError(
                "Invalid 'dashboard.reference_date', expected YYYY-MM-DD format."
            ) from exc

    interval = _number(section, "poll_interval_seconds", 30.0, "dashboard")
    if interval <= 0:
        raise ValueError("'dashboard.poll_interval_seconds' must be positive.")

    return DashboardConfig(
        ytd_mode=_choice(section, "ytd_mode", "month_end", YTD_MODES, "dashboard"),
        poll_interval_seconds=interval,
        reference_date=reference_date,
    )


def default_app_config(base_dir: Optional[Path] = None) -> AppConfig:
    """Fully defaulted configuration (in-memory storage), used for demo runs."""
    base = base_dir or Path.cwd()
    return AppConfig(
        group_id=1,
        storage_backend="memory",
        database=DatabaseConfig(
            engine="sqlite", path=(base / "data/db/konsernkontroll.sqlite").resolve()
        ),
        rest=_parse_rest({}),
        dashboard=DashboardConfig(),
        thresholds=ThresholdConfig(),
        display_mode="table",
        decimals=0,
        log_level="WARNING",
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the KonsernKontroll configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [group]
        ``id`` of the holding company whose companies are loaded.

    [storage]
        ``backend``: "sqlite" (default), "rest" or "memory".

    [database]
        Database engine and SQLite file path (sqlite backend).

    [rest]
        ``base_url``, ``timeout``, ``retries``, ``retry_delay`` for the REST
        backend. Credentials are read from the KONSERNKONTROLL_APP_ID and
        KONSERNKONTROLL_API_KEY environment variables, falling back to
        ``app_id`` / ``api_key`` keys.

    [dashboard]
        ``ytd_mode`` ("month_end" or "today"), ``poll_interval_seconds``
        and an optional fixed ``reference_date``.

    [thresholds]
        ``danger_deviation`` (percent) and ``low_liquidity`` (amount).

    [display]
        ``mode`` ("table", "csv", "both") and ``decimals``.

    [logging]
        ``level`` for the root logger.

    All file paths are resolved relative to the directory of the TOML file.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file (defaults to
        ``konsernkontroll_config.toml`` in the working directory).

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If a value is invalid.
    """
    config_file = Path(config_path or DEFAULT_CONFIG_FILE).resolve()
    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Group
    group_section = _section(raw, "group")
    try:
        group_id = int(group_section.get("id", 1))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid value for 'group.id'. Expected an integer.") from exc

    # 2) Storage
    storage_backend = _choice(
        _section(raw, "storage"), "backend", "sqlite", STORAGE_BACKENDS, "storage"
    )

    # 3) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/konsernkontroll.sqlite"
    db_path = (base_dir / str(db_path_raw)).resolve()
    database_config = DatabaseConfig(engine=db_engine, path=db_path)

    # 4) REST section
    rest_config = _parse_rest(_section(raw, "rest"))
    if storage_backend == "rest" and not rest_config.base_url:
        raise ValueError("'rest.base_url' is required when storage.backend = 'rest'.")

    # 5) Dashboard & thresholds
    dashboard = _parse_dashboard(_section(raw, "dashboard"))
    thresholds_section = _section(raw, "thresholds")
    thresholds = ThresholdConfig(
        danger_deviation=_number(thresholds_section, "danger_deviation", -15.0, "thresholds"),
        low_liquidity=_number(thresholds_section, "low_liquidity", 300_000.0, "thresholds"),
    )

    # 6) Display options
    display_section = _section(raw, "display")
    display_mode = _choice(display_section, "mode", "table", DISPLAY_MODES, "display")
    try:
        decimals = int(display_section.get("decimals", 0))
    except (TypeError, ValueError):
        decimals = 0

    # 7) Logging
    log_level = str(_section(raw, "logging").get("level", "WARNING")).upper()

    return AppConfig(
        group_id=group_id,
        storage_backend=storage_backend,
        database=database_config,
        rest=rest_config,
        dashboard=dashboard,
        thresholds=thresholds,
        display_mode=display_mode,
        decimals=decimals,
        log_level=log_level,
    )
