import pytest

from konsernkontroll import __version__
from konsernkontroll.cli import main
from konsernkontroll.storage import DatabaseConfig, SQLiteTableStore


def write_config(tmp_path):
    """Write a config file for group 1 on db/konsern.sqlite."""
    config_path = tmp_path / "konsernkontroll_config.toml"
    config_path.write_text(
        '[group]\nid = 1\n\n[storage]\nbackend = "sqlite"\n\n'
        '[database]\nengine = "sqlite"\npath = "db/konsern.sqlite"\n',
        encoding="utf-8",
    )
    return str(config_path)


def make_sqlite_config(tmp_path):
    """Write a config file pointing to a seeded SQLite database."""
    db_path = tmp_path / "db" / "konsern.sqlite"
    store = SQLiteTableStore(DatabaseConfig(engine="sqlite", path=db_path))
    store.insert_rows("groups", [{"name": "Test Konsern AS"}])
    store.insert_rows(
        "users",
        [
            {"email": "ctrl@konsern.no", "full_name": "Kari", "role": "controller", "group_id": 1},
            {"email": "ola@konsern.no", "full_name": "Ola", "role": "leader", "group_id": 1, "auth_id": "ola"},
        ],
    )
    return write_config(tmp_path), store


def test_version(capsys) -> None:
    main(["--version"])
    assert __version__ in capsys.readouterr().out


def test_demo_dashboard(capsys) -> None:
    main(["--demo", "--reference-date", "2023-11-15"])
    out = capsys.readouterr().out
    assert "Demo Konsern AS" in out
    assert "=== Dashboard ===" in out
    assert "VPS" in out
    assert "PHR" in out


def test_demo_control_view_with_risk_matrix(capsys) -> None:
    main(["--demo", "--reference-date", "2023-11-15", "dashboard", "--control", "--risk"])
    out = capsys.readouterr().out
    assert "=== Risk matrix ===" in out
    assert "BPS" not in out.split("=== Dashboard ===")[1].split("=== Risk matrix ===")[0]


def test_demo_reports_list(capsys) -> None:
    main(["--demo", "reports", "list", "1"])
    out = capsys.readouterr().out
    assert "Tripletex" in out
    assert "approved" in out


def test_demo_submit_report(capsys) -> None:
    main(["--demo", "reports", "submit", "2", "--liquidity", "100000", "--comment", "Ny likviditet"])
    assert "Submitted report #3 for company #2." in capsys.readouterr().out


def test_demo_budget_command(capsys) -> None:
    main(["--demo", "companies", "budget", "1", "--mode", "quarterly", "300", "300", "300", "100"])
    out = capsys.readouterr().out
    assert "Budget of VPS: 1000 (quarterly)" in out
    assert "33, 33, 34" in out


def test_demo_csv_export(tmp_path, capsys) -> None:
    main(["--demo", "--display-mode", "csv", "--output", str(tmp_path)])
    files = list(tmp_path.glob("dashboard_*.csv"))
    assert len(files) == 1
    assert "Wrote" in capsys.readouterr().out


def test_approved_report_cannot_be_deleted() -> None:
    with pytest.raises(SystemExit):
        main(["--demo", "reports", "delete", "1"])


def test_invalid_reference_date() -> None:
    with pytest.raises(SystemExit):
        main(["--demo", "--reference-date", "15.11.2023"])


def test_missing_config_file(tmp_path) -> None:
    with pytest.raises(SystemExit):
        main(["--config", str(tmp_path / "missing.toml"), "--user", "1"])


def test_user_is_required_without_demo(tmp_path) -> None:
    config_path, _ = make_sqlite_config(tmp_path)
    with pytest.raises(SystemExit):
        main(["--config", config_path])


def test_sqlite_flow(tmp_path, capsys) -> None:
    config_path, store = make_sqlite_config(tmp_path)
    base = ["--config", config_path, "--user", "1"]

    main(base + ["companies", "add", "--name", "ABC", "--budget-total", "1200"])
    main(base + ["users", "update", "2", "--company", "1"])
    main(base + ["reports", "submit", "1", "--revenue", "500", "--expenses", "200"])
    capsys.readouterr()

    main(["--config", config_path, "--user", "ola", "--reference-date", "2024-04-01"])
    out = capsys.readouterr().out
    assert "ABC" in out
    assert "Ola" in out

    company = store.fetch_rows("companies", {"id": 1})[0]
    assert company["manager"] == "Ola"
    assert company["result_ytd"] == 300
    assert len(store.fetch_rows("reports")) == 1


def test_leader_cannot_manage_companies(tmp_path) -> None:
    config_path, _ = make_sqlite_config(tmp_path)
    with pytest.raises(SystemExit):
        main(["--config", config_path, "--user", "ola", "companies", "add", "--name", "X"])


def test_unknown_user_fails(tmp_path) -> None:
    config_path, _ = make_sqlite_config(tmp_path)
    with pytest.raises(SystemExit):
        main(["--config", config_path, "--user", "nobody"])


def test_init_bootstraps_an_empty_database(tmp_path, capsys) -> None:
    config_path = write_config(tmp_path)

    main(
        [
            "--config", config_path, "init",
            "--group-name", "Ny Konsern AS",
            "--email", "ctrl@konsern.no",
            "--full-name", "Kari",
        ]
    )
    assert "Initialized group #1 (Ny Konsern AS) with controller #1 ctrl@konsern.no." in (
        capsys.readouterr().out
    )

    main(["--config", config_path, "--user", "1", "companies", "add", "--name", "NEW"])
    main(["--config", config_path, "--user", "1"])
    out = capsys.readouterr().out
    assert "Ny Konsern AS" in out
    assert "NEW" in out

    store = SQLiteTableStore(DatabaseConfig(engine="sqlite", path=tmp_path / "db" / "konsern.sqlite"))
    assert [u["role"] for u in store.fetch_rows("users")] == ["controller"]


def test_init_refuses_group_with_users(tmp_path) -> None:
    config_path, store = make_sqlite_config(tmp_path)
    with pytest.raises(SystemExit):
        main(["--config", config_path, "init", "--group-name", "X", "--email", "x@konsern.no"])
    assert len(store.fetch_rows("users")) == 2


def test_controller_cannot_delete_other_groups_company(tmp_path) -> None:
    config_path, store = make_sqlite_config(tmp_path)
    store.insert_rows("groups", [{"name": "Other AS"}])
    store.insert_rows("companies", [{"group_id": 2, "name": "THEIRS"}])

    with pytest.raises(SystemExit):
        main(["--config", config_path, "--user", "1", "companies", "delete", "1"])
    assert [c["name"] for c in store.fetch_rows("companies")] == ["THEIRS"]
