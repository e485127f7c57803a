# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Company visibility and user administration.

Access model
------------
- Controllers see every company of their group.
- Leaders see the companies listed in their multi-company grants
  (``user_company_access``). Only when they have no grant at all does the
  deprecated single ``users.company_id`` pointer apply. A leader with
  neither sees nothing.

Manager names
-------------
Each company's ``manager`` field is a derived display string: the
comma-joined full names of every leader with access to it, either through
a grant or through the legacy pointer, deduplicated by user id and listed
in user id order. Companies without any leader show
``NO_MANAGER_PLACEHOLDER``.

``AccessResolver.sync_manager_names`` must run after every user change
that may alter leader-to-company assignments. It issues one patch per
company and is not transactional: a failing company is logged and the
remaining companies are still processed. Re-running it is safe.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from .activity import ActivityLog
from .companies import CompanyRegistry
from .models import NO_MANAGER_PLACEHOLDER, ROLES, Company, User
from .reconcile import RecordDecodeError, decode_user, read_field
from .storage import RowPatch, StorageError, TableStore, first_row

logger = logging.getLogger(__name__)


def hash_password(plain_text: str) -> str:
    """SHA-256 hex digest of ``plain_text`` ("" for an empty password)."""
    if not plain_text:
        return ""
    return hashlib.sha256(plain_text.encode("utf-8")).hexdigest()


def accessible_company_ids(user: User) -> set[int]:
    """Company ids a leader may see (grants, else the legacy pointer)."""
    if user.company_ids:
        return set(user.company_ids)
    if user.company_id is not None:
        return {user.company_id}
    return set()


def visible_companies(user: User, companies: Iterable[Company]) -> list[Company]:
    """
    Filter ``companies`` down to what ``user`` may see.

    ``companies`` is expected to be one group's list already (the
    registry is group-scoped); controllers get it unfiltered. Order is
    preserved.
    """
    companies = list(companies)
    if user.is_controller:
        return companies
    allowed = accessible_company_ids(user)
    return [c for c in companies if c.id in allowed]


def manager_names(company_id: int, users: Sequence[User]) -> str:
    """Comma-joined names of the leaders with access to ``company_id``."""
    names: list[str] = []
    seen: set[int] = set()
    for user in sorted(users, key=lambda u: u.id):
        if user.role != "leader" or user.id in seen:
            continue
        if company_id in user.company_ids or user.company_id == company_id:
            seen.add(user.id)
            names.append(user.full_name or user.email)
    return ", ".join(names) if names else NO_MANAGER_PLACEHOLDER


def _touched_companies(user: User) -> set[int]:
    ids = set(user.company_ids)
    if user.company_id is not None:
        ids.add(user.company_id)
    return ids


class AccessResolver:
    """
    User administration for one group, keeping manager names in sync.

    Parameters
    ----------
    store:
        Storage backend holding ``users`` and ``user_company_access``.
    registry:
        The group's companies; manager names are written through it.
    activity:
        Optional activity log for ``user.*`` entries.
    actor_id:
        Id of the signed-in user, recorded with activity entries.
    """

    def __init__(
        self,
        store: TableStore,
        registry: CompanyRegistry,
        activity: ActivityLog | None = None,
        actor_id: int | None = None,
    ):
        self.store = store
        self.registry = registry
        self.activity = activity
        self.actor_id = actor_id
        self._users: list[User] = []

    @property
    def group_id(self) -> int:
        return self.registry.group_id

    # -- reads -------------------------------------------------------------

    def load_users(self) -> list[User]:
        """
        Read the group's users and merge in their access grants.

        Grant rows may spell the user key ``user_id`` or ``userId``, so they
        are read unfiltered and matched here. Malformed grants are skipped.
        """
        decoded: list[tuple[dict[str, Any], User]] = []
        for row in self.store.fetch_rows("users", {"group_id": self.group_id}):
            try:
                decoded.append((row, decode_user(row)))
            except RecordDecodeError as exc:
                logger.warning("Skipping user row: %s", exc)

        user_ids = {user.id for _, user in decoded}
        grants: dict[int, list[int]] = {}
        if user_ids:
            for row in self.store.fetch_rows("user_company_access"):
                try:
                    uid = int(read_field(row, "user_id"))
                    cid = int(read_field(row, "company_id"))
                except (TypeError, ValueError):
                    logger.warning("Skipping malformed access grant: %r", row)
                    continue
                if uid in user_ids:
                    grants.setdefault(uid, []).append(cid)

        users = [decode_user(row, grants.get(user.id, ())) for row, user in decoded]
        self._users = sorted(users, key=lambda u: u.id)
        return list(self._users)

    @property
    def users(self) -> list[User]:
        return list(self._users)

    def get_user(self, user_id: int) -> User | None:
        return next((u for u in self._users if u.id == user_id), None)

    def visible_companies(self, user: User) -> list[Company]:
        return visible_companies(user, self.registry.all())

    # -- manager names -----------------------------------------------------

    def sync_manager_names(self, company_ids: Iterable[int] | None = None) -> dict[int, str]:
        """
        Recompute and store the manager display string of each company.

        Returns the names written, keyed by company id. Companies unknown to
        the registry are ignored; per-company storage failures are logged
        and skipped.
        """
        ids = [c.id for c in self.registry.all()] if company_ids is None else list(company_ids)
        written: dict[int, str] = {}
        for company_id in dict.fromkeys(ids):
            company = self.registry.get(company_id)
            if company is None:
                continue
            name = manager_names(company_id, self._users)
            if company.manager == name:
                written[company_id] = name
                continue
            try:
                self.registry.set_manager(company_id, name)
            except StorageError as exc:
                logger.error("Failed to update manager of company %s: %s", company_id, exc)
                continue
            written[company_id] = name
        return written

    # -- writes ------------------------------------------------------------

    def _record(self, action: str, user_id: int, details: str = "") -> None:
        if self.activity is not None:
            self.activity.record(self.actor_id, action, "user", user_id, details)

    def _replace_grants(self, user_id: int, company_ids: Iterable[int]) -> None:
        existing = self.store.fetch_rows("user_company_access", {"user_id": user_id})
        if existing:
            self.store.delete_rows("user_company_access", [r["id"] for r in existing])
        rows = [{"user_id": user_id, "company_id": cid} for cid in dict.fromkeys(company_ids)]
        if rows:
            self.store.insert_rows("user_company_access", rows)

    @staticmethod
    def _check_role(role: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role!r} (expected one of {', '.join(ROLES)})")

    def add_user(
        self,
        email: str,
        full_name: str,
        role: str = "leader",
        password: str = "",
        company_ids: Iterable[int] = (),
        company_id: int | None = None,
        auth_id: str | None = None,
    ) -> User:
        """
        Create a user in this group with the given access grants.

        Controllers never keep grants or a legacy pointer.
        """
        self._check_role(role)
        grants = [] if role == "controller" else list(company_ids)
        row: dict[str, Any] = {
            "email": email,
            "full_name": full_name,
            "role": role,
            "group_id": self.group_id,
            "password": hash_password(password),
            "company_id": None if role == "controller" else company_id,
            "auth_id": auth_id,
        }
        inserted = self.store.insert_rows("users", [row])
        user_id = int(first_row(inserted, "users")["id"])
        if grants:
            self._replace_grants(user_id, grants)

        self.load_users()
        user = self.get_user(user_id)
        self._record("user.add", user_id, email)
        if user is not None:
            self.sync_manager_names(_touched_companies(user))
        return user

    def update_user(
        self,
        user_id: int,
        *,
        email: str | None = None,
        full_name: str | None = None,
        role: str | None = None,
        password: str | None = None,
        company_ids: Iterable[int] | None = None,
        company_id: int | None = None,
    ) -> User:
        """
        Update a user's profile and, when given, replace their grants.

        Manager names are resynchronised for the union of the old and new
        companies.

        Raises
        ------
        KeyError
            If the user is not part of this group.
        """
        before = self.get_user(user_id)
        if before is None:
            raise KeyError(f"Unknown user id: {user_id}")
        if role is not None:
            self._check_role(role)
        new_role = role or before.role

        fields: dict[str, Any] = {}
        if email is not None:
            fields["email"] = email
        if full_name is not None:
            fields["full_name"] = full_name
        if role is not None:
            fields["role"] = role
        if password:
            fields["password"] = hash_password(password)
        if company_id is not None:
            fields["company_id"] = company_id
        if new_role == "controller":
            fields["company_id"] = None
            company_ids = []

        if fields:
            self.store.patch_rows("users", RowPatch(id=user_id, fields=fields))
        if company_ids is not None:
            self._replace_grants(user_id, company_ids)

        self.load_users()
        after = self.get_user(user_id)
        self._record("user.update", user_id, ", ".join(sorted(fields)))
        affected = _touched_companies(before) | (_touched_companies(after) if after else set())
        self.sync_manager_names(sorted(affected))
        return after

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and their grants, then resync their companies."""
        before = self.get_user(user_id)
        if before is None:
            logger.warning("Cannot delete user %s: not found", user_id)
            return False

        self.store.delete_rows("users", [user_id])
        self._replace_grants(user_id, [])
        self.load_users()
        self._record("user.delete", user_id, before.email)
        self.sync_manager_names(sorted(_touched_companies(before)))
        return True


def bootstrap_group(
    store: TableStore,
    group_id: int,
    group_name: str,
    email: str,
    full_name: str = "",
    password: str = "",
    auth_id: str | None = None,
) -> User:
    """
    Create group ``group_id`` and its first controller on an empty database.

    The group row is inserted only when it does not exist yet. Refuses to
    run once the group has any user, so it cannot be used to add a second
    controller without signing in.

    Raises
    ------
    ValueError
        If the group name or email is empty, or the group already has users.
    """
    if not group_name.strip():
        raise ValueError("Group name must not be empty.")
    if not email.strip():
        raise ValueError("Email must not be empty.")
    if store.fetch_rows("users", {"group_id": group_id}):
        raise ValueError(
            f"Group {group_id} already has users; sign in as a controller and use 'users add'."
        )
    if not store.fetch_rows("groups", {"id": group_id}):
        store.insert_rows("groups", [{"id": group_id, "name": group_name.strip()}])
        logger.info("Created group %s (%s)", group_id, group_name.strip())

    resolver = AccessResolver(store, CompanyRegistry(store, group_id))
    return resolver.add_user(
        email.strip(), full_name, role="controller", password=password, auth_id=auth_id
    )
