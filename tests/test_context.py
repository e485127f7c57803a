from dataclasses import replace
from datetime import date

import pytest

from konsernkontroll.config import default_app_config
from konsernkontroll.context import AppContext
from konsernkontroll.demo import DEMO_GROUP_NAME, demo_tables
from konsernkontroll.storage import MemoryTableStore, StorageError


class BrokenStore(MemoryTableStore):
    def fetch_rows(self, table, filters=None):
        if table == "companies":
            raise StorageError(503, "unavailable")
        return super().fetch_rows(table, filters)


def leader_store() -> MemoryTableStore:
    tables = demo_tables()
    tables["users"].append(
        {"id": 2, "auth_id": "ola", "email": "ola@konsern.no", "full_name": "Ola", "role": "leader", "group_id": 1}
    )
    tables["user_company_access"] = [
        {"user_id": 2, "company_id": 3},
        {"user_id": 2, "company_id": 5},
    ]
    return MemoryTableStore(tables)


def test_demo_context_is_ready() -> None:
    ctx = AppContext.demo()
    try:
        assert ctx.state == "ready"
        assert ctx.user.is_controller
        assert ctx.group_name == DEMO_GROUP_NAME
        assert len(ctx.visible_companies()) == 9
        assert len(ctx.ledger.reports_for(1)) == 2
    finally:
        ctx.close()


def test_demo_dashboard_figures() -> None:
    ctx = AppContext.demo()
    try:
        computed = ctx.dashboard(date(2023, 11, 15))
        vps = computed[0]
        assert vps.name == "VPS"
        assert vps.calculated_budget_ytd == 1_300_000.0
        assert vps.calculated_deviation == -60_000.0
        assert vps.calculated_deviation_percent == pytest.approx(-60_000 / 1_300_000 * 100)
    finally:
        ctx.close()


def test_set_ytd_mode() -> None:
    ctx = AppContext.demo()
    try:
        ctx.reference_date = date(2023, 11, 15)
        today = ctx.set_ytd_mode("today")
        assert ctx.ytd_mode == "today"
        assert today[0].calculated_budget_ytd == pytest.approx(1_300_000 + 130_000 * 15 / 30)
        with pytest.raises(ValueError):
            ctx.set_ytd_mode("weekly")
    finally:
        ctx.close()


def test_leader_sees_granted_companies_only() -> None:
    ctx = AppContext(default_app_config(), leader_store())
    try:
        assert ctx.start("ola") == "ready"
        assert ctx.user.company_ids == (3, 5)
        assert [c.id for c in ctx.visible_companies()] == [3, 5]
        assert ctx.can_see(3)
        assert not ctx.can_see(1)
    finally:
        ctx.close()


def test_sign_in_by_numeric_id() -> None:
    ctx = AppContext(default_app_config(), leader_store())
    try:
        assert ctx.start("2") == "ready"
        assert ctx.user.email == "ola@konsern.no"
    finally:
        ctx.close()


def test_unknown_user_is_error_state() -> None:
    ctx = AppContext(default_app_config(), MemoryTableStore(demo_tables()))
    try:
        assert ctx.start("nobody") == "error"
        assert "nobody" in ctx.error_message
        with pytest.raises(RuntimeError):
            ctx.dashboard()
    finally:
        ctx.close()


def test_user_from_other_group_is_refused() -> None:
    config = replace(default_app_config(), group_id=2)
    ctx = AppContext(config, MemoryTableStore(demo_tables()))
    try:
        assert ctx.start("demo") == "error"
    finally:
        ctx.close()


def test_storage_failure_during_start() -> None:
    ctx = AppContext(default_app_config(), BrokenStore(demo_tables()))
    try:
        with pytest.raises(StorageError):
            ctx.start("demo")
        assert ctx.state == "error"
    finally:
        ctx.close()


def test_reload_picks_up_external_changes_and_stops_after_close() -> None:
    ctx = AppContext.demo()
    ctx.store.patch_rows("companies", {"id": 2, "liquidity": 1})

    companies = ctx.reload()
    assert companies is not None
    assert ctx.registry.get(2).liquidity == 1.0

    ctx.close()
    assert ctx.reload() is None


def test_polling_can_be_started_and_stopped() -> None:
    ctx = AppContext.demo()
    try:
        ctx.start_polling(interval=0.01)
        assert ctx.is_polling
        ctx.stop_polling()
        assert not ctx.is_polling
    finally:
        ctx.close()
