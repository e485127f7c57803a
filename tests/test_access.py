import pytest

from konsernkontroll.access import (
    AccessResolver,
    accessible_company_ids,
    bootstrap_group,
    hash_password,
    manager_names,
    visible_companies,
)
from konsernkontroll.companies import CompanyRegistry
from konsernkontroll.models import NO_MANAGER_PLACEHOLDER, Company, User
from konsernkontroll.storage import MemoryTableStore, StorageError

COMPANIES = [Company(id=1, name="VPS"), Company(id=2, name="BCC"), Company(id=3, name="AK")]


class FailingPatchStore(MemoryTableStore):
    """Memory store that refuses to patch company 1."""

    def patch_rows(self, table, patches):
        if table == "companies" and getattr(patches, "id", None) == 1:
            raise StorageError(500, "boom")
        return super().patch_rows(table, patches)


def make_resolver(store=None):
    store = store or MemoryTableStore(
        {
            "groups": [{"id": 1, "name": "Konsern AS"}],
            "companies": [
                {"id": 1, "group_id": 1, "name": "VPS", "sort_order": 0},
                {"id": 2, "group_id": 1, "name": "BCC", "sort_order": 1},
            ],
            "users": [
                {"id": 1, "email": "ctrl@konsern.no", "full_name": "Kari", "role": "controller", "group_id": 1},
            ],
        }
    )
    registry = CompanyRegistry(store, group_id=1)
    registry.reload()
    resolver = AccessResolver(store, registry)
    resolver.load_users()
    return store, registry, resolver


def test_controller_sees_every_company() -> None:
    controller = User(id=1, role="controller", company_id=2)
    assert visible_companies(controller, COMPANIES) == COMPANIES


def test_leader_grants_take_precedence_over_legacy_pointer() -> None:
    leader = User(id=2, role="leader", company_id=1, company_ids=(2, 3))
    assert accessible_company_ids(leader) == {2, 3}
    assert [c.id for c in visible_companies(leader, COMPANIES)] == [2, 3]


def test_leader_falls_back_to_legacy_pointer() -> None:
    leader = User(id=2, role="leader", company_id=1)
    assert [c.id for c in visible_companies(leader, COMPANIES)] == [1]


def test_leader_without_access_sees_nothing() -> None:
    assert visible_companies(User(id=2, role="leader"), COMPANIES) == []


def test_manager_names_join_grants_and_legacy_in_user_order() -> None:
    users = [
        User(id=3, full_name="B", role="leader", company_id=1),
        User(id=2, full_name="A", role="leader", company_ids=(1, 2)),
        User(id=1, full_name="Boss", role="controller", company_ids=(1,)),
    ]
    assert manager_names(1, users) == "A, B"
    assert manager_names(2, users) == "A"
    assert manager_names(3, users) == NO_MANAGER_PLACEHOLDER


def test_hash_password() -> None:
    assert hash_password("") == ""
    digest = hash_password("hemmelig")
    assert len(digest) == 64
    assert digest == hash_password("hemmelig")


def test_add_user_updates_manager_names() -> None:
    store, registry, resolver = make_resolver()

    user = resolver.add_user("ola@konsern.no", "Ola", password="pw", company_ids=[1])

    assert user.company_ids == (1,)
    assert registry.get(1).manager == "Ola"
    assert registry.get(2).manager == ""
    stored = store.fetch_rows("users", {"id": user.id})[0]
    assert stored["password"] == hash_password("pw")


def test_update_user_moves_manager_between_companies() -> None:
    _, registry, resolver = make_resolver()
    user = resolver.add_user("ola@konsern.no", "Ola", company_ids=[1])

    resolver.update_user(user.id, company_ids=[2])

    assert registry.get(1).manager == NO_MANAGER_PLACEHOLDER
    assert registry.get(2).manager == "Ola"


def test_promoting_to_controller_clears_access() -> None:
    store, registry, resolver = make_resolver()
    user = resolver.add_user("ola@konsern.no", "Ola", company_ids=[1], company_id=2)

    updated = resolver.update_user(user.id, role="controller")

    assert updated.is_controller
    assert updated.company_ids == ()
    assert updated.company_id is None
    assert store.fetch_rows("user_company_access", {"user_id": user.id}) == []
    assert registry.get(1).manager == NO_MANAGER_PLACEHOLDER
    assert registry.get(2).manager == NO_MANAGER_PLACEHOLDER


def test_delete_user_resyncs_companies() -> None:
    _, registry, resolver = make_resolver()
    user = resolver.add_user("ola@konsern.no", "Ola", company_ids=[1, 2])

    assert resolver.delete_user(user.id) is True

    assert resolver.get_user(user.id) is None
    assert registry.get(1).manager == NO_MANAGER_PLACEHOLDER
    assert resolver.delete_user(user.id) is False


def test_update_unknown_user_raises() -> None:
    _, _, resolver = make_resolver()
    with pytest.raises(KeyError):
        resolver.update_user(99, full_name="Nobody")


def test_invalid_role_is_rejected() -> None:
    _, _, resolver = make_resolver()
    with pytest.raises(ValueError):
        resolver.add_user("x@y.no", "X", role="admin")


def test_sync_manager_names_continues_after_failure() -> None:
    store = FailingPatchStore(
        {
            "companies": [
                {"id": 1, "group_id": 1, "name": "VPS"},
                {"id": 2, "group_id": 1, "name": "BCC"},
            ],
            "users": [{"id": 5, "email": "o@k.no", "full_name": "Ola", "role": "leader", "group_id": 1}],
            "user_company_access": [
                {"user_id": 5, "company_id": 1},
                {"user_id": 5, "company_id": 2},
            ],
        }
    )
    _, registry, resolver = make_resolver(store)

    written = resolver.sync_manager_names()

    assert written == {2: "Ola"}
    assert registry.get(1).manager == ""
    assert registry.get(2).manager == "Ola"


def test_load_users_reads_camel_case_grants_and_skips_bad_rows() -> None:
    store = MemoryTableStore(
        {
            "companies": [
                {"id": 1, "group_id": 1, "name": "VPS"},
                {"id": 2, "group_id": 1, "name": "BCC"},
            ],
            "users": [{"id": 5, "email": "o@k.no", "full_name": "Ola", "role": "leader", "group_id": 1}],
            "user_company_access": [
                {"userId": 5, "companyId": 2},
                {"user_id": "5", "company_id": 1},
                {"user_id": "abc", "company_id": 1},
                {"user_id": 5},
                {"user_id": 99, "company_id": 1},
            ],
        }
    )
    _, _, resolver = make_resolver(store)

    users = resolver.load_users()

    assert [u.id for u in users] == [5]
    assert set(users[0].company_ids) == {1, 2}


def test_bootstrap_group_creates_group_and_first_controller() -> None:
    store = MemoryTableStore()

    user = bootstrap_group(store, 3, "Ny Konsern AS", "ctrl@konsern.no", "Kari", password="hemmelig")

    assert user.role == "controller"
    assert user.group_id == 3
    assert store.fetch_rows("groups")[0]["name"] == "Ny Konsern AS"
    assert store.fetch_rows("users")[0]["password"] == hash_password("hemmelig")

    with pytest.raises(ValueError):
        bootstrap_group(store, 3, "Ny Konsern AS", "second@konsern.no")
