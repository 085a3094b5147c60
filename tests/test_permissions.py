"""
tests/test_permissions.py -- PermissionResolver against a seeded in-memory database.

Coverage:
  - Action checks: deny when no row exists, deny unknown actions, honor each flag
  - Role resolution: seeded matrix, unknown and inactive users
  - Visibility: registry defaults, role-only modules, overrides, independence
    from action permissions
  - Administration: role permission and visibility upserts
  - Storage failures propagate instead of turning into a denial
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, insert, select

from auth.permissions import PermissionResolver
from auth.store import UserStore
from auth.tokens import hash_password
from core.errors import StorageError, UserNotFoundError
from core.models import MODULE_REGISTRY, PermissionSet, User
from core.schema import DEFAULT_ROLE_PERMISSIONS, now_iso, role_permissions, user_module_visibility, users

pytestmark = pytest.mark.anyio

_DIGEST = hash_password("placeholder1", rounds=4)


async def _add_user(db, username: str, role: str, status: str = "active") -> int:
    return await UserStore(db).create_user(
        User(username=username, role=role, status=status, password_hash=_DIGEST)
    )


class TestCheckAction:
    @pytest.mark.parametrize("action", ["view", "create", "edit", "delete"])
    async def test_missing_row_denies_every_action(self, db, action):
        resolver = PermissionResolver(db)
        assert await resolver.check_action("provisioner", "cnx_colocation", action) is False
        assert await resolver.check_action("no_such_role", "carriers", action) is False

    async def test_unknown_action_denied_even_for_full_access(self, db):
        resolver = PermissionResolver(db)
        assert await resolver.check_action("administrator", "network_routes", "view") is True
        assert await resolver.check_action("administrator", "network_routes", "export") is False

    async def test_unknown_action_never_touches_storage(self, failing_db):
        assert await PermissionResolver(failing_db).check_action("administrator", "carriers", "export") is False

    async def test_flags_are_independent(self, db):
        resolver = PermissionResolver(db)
        # read_only has (view, create, edit) on network_design but not delete
        assert await resolver.check_action("read_only", "network_design", "edit") is True
        assert await resolver.check_action("read_only", "network_design", "delete") is False
        assert await resolver.check_action("read_only", "carriers", "create") is False

    async def test_provisioner_may_create_but_not_delete_carriers(self, db):
        resolver = PermissionResolver(db)
        assert await resolver.check_action("provisioner", "carriers", "create") is True
        assert await resolver.check_action("provisioner", "carriers", "delete") is False

    async def test_all_false_row_denies(self, db):
        resolver = PermissionResolver(db)
        assert await resolver.check_action("provisioner", "user_management", "view") is False

    async def test_storage_failure_propagates(self, failing_db):
        with pytest.raises(StorageError):
            await PermissionResolver(failing_db).check_action("administrator", "carriers", "view")


class TestResolvePermissions:
    async def test_returns_seeded_matrix_for_role(self, db):
        uid = await _add_user(db, "prov", "provisioner")
        perms = await PermissionResolver(db).resolve_permissions(uid)
        assert set(perms) == set(DEFAULT_ROLE_PERMISSIONS["provisioner"])
        assert perms["network_routes"] == PermissionSet(True, True, True, False)
        assert perms["exchange_data"] == PermissionSet(True, False, True, False)

    async def test_unknown_user(self, db):
        with pytest.raises(UserNotFoundError):
            await PermissionResolver(db).resolve_permissions(9999)

    async def test_inactive_user_treated_as_not_found(self, db):
        uid = await _add_user(db, "gone", "administrator", status="inactive")
        with pytest.raises(UserNotFoundError):
            await PermissionResolver(db).resolve_permissions(uid)

    async def test_storage_failure_propagates(self, failing_db):
        with pytest.raises(StorageError):
            await PermissionResolver(failing_db).resolve_permissions(1)


class TestVisibility:
    async def test_every_registry_module_visible_by_default(self, db):
        uid = await _add_user(db, "ro", "read_only")
        effective = await PermissionResolver(db).resolve_permissions_with_visibility(uid)
        assert set(MODULE_REGISTRY) <= set(effective.visibility)
        assert all(effective.visibility.values())

    async def test_registry_modules_without_role_row_still_visible(self, db):
        uid = await _add_user(db, "ro", "read_only")
        effective = await PermissionResolver(db).resolve_permissions_with_visibility(uid)
        assert "bulk_upload" not in effective.permissions
        assert effective.visibility["bulk_upload"] is True

    async def test_role_module_outside_registry_is_visible(self, db):
        resolver = PermissionResolver(db)
        await resolver.set_role_permission("provisioner", "dark_fiber", PermissionSet(can_view=True))
        uid = await _add_user(db, "prov", "provisioner")
        effective = await resolver.resolve_permissions_with_visibility(uid)
        assert effective.visibility["dark_fiber"] is True

    async def test_override_hides_module_without_touching_permissions(self, db):
        # A user with a fixed id, hidden from carriers
        await db.run(
            insert(users).values(
                id=42, username="u42", password_hash=_DIGEST, user_role="provisioner", status="active",
                created_at=now_iso(), updated_at=now_iso(),
            )
        )
        resolver = PermissionResolver(db)
        await resolver.set_module_visibility(42, "carriers", False)

        effective = await resolver.resolve_permissions_with_visibility(42)
        assert effective.visibility["carriers"] is False
        assert effective.permissions["carriers"].can_view is True
        assert await resolver.check_action("provisioner", "carriers", "view") is True

    async def test_override_can_name_unregistered_module(self, db):
        uid = await _add_user(db, "ro", "read_only")
        resolver = PermissionResolver(db)
        await resolver.set_module_visibility(uid, "legacy_reports", False)
        effective = await resolver.resolve_permissions_with_visibility(uid)
        assert effective.visibility["legacy_reports"] is False

    async def test_override_is_per_user(self, db):
        first = await _add_user(db, "first", "read_only")
        second = await _add_user(db, "second", "read_only")
        resolver = PermissionResolver(db)
        await resolver.set_module_visibility(first, "locations", False)
        assert (await resolver.resolve_permissions_with_visibility(second)).visibility["locations"] is True

    async def test_visibility_upsert_keeps_one_row(self, db):
        uid = await _add_user(db, "ro", "read_only")
        resolver = PermissionResolver(db)
        await resolver.set_module_visibility(uid, "carriers", False, actor_id=1)
        await resolver.set_module_visibility(uid, "carriers", True, actor_id=1)

        assert await resolver.list_visibility_overrides(uid) == {"carriers": True}
        row = await db.get(
            select(func.count().label("n"))
            .select_from(user_module_visibility)
            .where(user_module_visibility.c.user_id == uid)
        )
        assert row["n"] == 1


class TestRolePermissionAdmin:
    async def test_list_all_roles(self, db):
        matrix = await PermissionResolver(db).list_role_permissions()
        assert set(matrix) == {"administrator", "provisioner", "read_only"}
        assert matrix["administrator"]["change_logs"] == PermissionSet(can_view=True)

    async def test_list_one_role(self, db):
        matrix = await PermissionResolver(db).list_role_permissions("read_only")
        assert list(matrix) == ["read_only"]

    async def test_get_missing_row(self, db):
        assert await PermissionResolver(db).get_role_permission("provisioner", "cnx_colocation") is None

    async def test_set_replaces_existing_row(self, db):
        resolver = PermissionResolver(db)
        await resolver.set_role_permission("read_only", "carriers", PermissionSet(True, True, False, False))

        assert await resolver.check_action("read_only", "carriers", "create") is True
        row = await db.get(
            select(func.count().label("n"))
            .select_from(role_permissions)
            .where((role_permissions.c.role_name == "read_only") & (role_permissions.c.module_name == "carriers"))
        )
        assert row["n"] == 1

    async def test_set_inserts_new_row(self, db):
        resolver = PermissionResolver(db)
        await resolver.set_role_permission("provisioner", "cnx_colocation", PermissionSet(can_view=True))
        assert await resolver.get_role_permission("provisioner", "cnx_colocation") == PermissionSet(can_view=True)
