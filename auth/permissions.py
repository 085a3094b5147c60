"""
auth/permissions.py -- Permission resolver: role defaults merged with per-user visibility.

Two independent checks with intentionally opposite defaults:

  Action permission (security-relevant): role_permissions row for
      (role, module). No row -> deny. Unknown action -> deny.

  Visibility (presentation): every module in MODULE_REGISTRY plus every
      module the role has a row for defaults to visible. Only an explicit
      user_module_visibility row can hide it. Visibility never grants an
      action and hiding a module never revokes one.

Resolution is a chain of awaited single-statement reads (user -> role rows
-> overrides) with no surrounding transaction. A role change landing between
two reads can produce a stale or split result; that is accepted.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import insert, select, update

from core.db import Database
from core.errors import UserNotFoundError
from core.models import ACTIONS, MODULE_REGISTRY, EffectivePermissions, PermissionSet
from core.schema import now_iso, role_permissions, user_module_visibility, users

logger = logging.getLogger("netinv.auth.permissions")


def _row_to_permission_set(row: dict) -> PermissionSet:
    return PermissionSet(
        can_view=bool(row["can_view"]),
        can_create=bool(row["can_create"]),
        can_edit=bool(row["can_edit"]),
        can_delete=bool(row["can_delete"]),
    )


class PermissionResolver:
    """Computes effective capabilities from role_permissions and visibility overrides."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _active_role(self, user_id: int) -> str:
        row = await self.db.get(
            select(users.c.user_role, users.c.status).where(users.c.id == user_id)
        )
        if row is None or row["status"] != "active":
            raise UserNotFoundError(user_id)
        return row["user_role"]

    async def _role_permissions(self, role: str) -> dict[str, PermissionSet]:
        rows = await self.db.all(
            select(
                role_permissions.c.module_name,
                role_permissions.c.can_view,
                role_permissions.c.can_create,
                role_permissions.c.can_edit,
                role_permissions.c.can_delete,
            ).where(role_permissions.c.role_name == role)
        )
        return {r["module_name"]: _row_to_permission_set(r) for r in rows}

    async def resolve_permissions(self, user_id: int) -> dict[str, PermissionSet]:
        """Return {module_name: PermissionSet} for the user's role.

        Raises UserNotFoundError if the id is unknown or the user is inactive.
        """
        role = await self._active_role(user_id)
        return await self._role_permissions(role)

    async def resolve_permissions_with_visibility(self, user_id: int) -> EffectivePermissions:
        """Return role permissions plus the per-user visibility map.

        Visibility keys are MODULE_REGISTRY union the role's modules, all True,
        then overwritten by the user's explicit overrides.
        """
        permissions = await self.resolve_permissions(user_id)

        visibility: dict[str, bool] = {module: True for module in MODULE_REGISTRY}
        for module in permissions:
            visibility.setdefault(module, True)

        for module, is_visible in (await self.list_visibility_overrides(user_id)).items():
            visibility[module] = is_visible

        return EffectivePermissions(permissions=permissions, visibility=visibility)

    async def check_action(self, role: str, module: str, action: str) -> bool:
        """Return True only if role has a row for module with the action flag set.

        Unknown actions are denied without touching storage.
        """
        if action not in ACTIONS:
            logger.debug("Unknown action %r on %s for role %s denied", action, module, role)
            return False
        row = await self.db.get(
            select(role_permissions).where(
                (role_permissions.c.role_name == role) & (role_permissions.c.module_name == module)
            )
        )
        if row is None:
            return False
        return _row_to_permission_set(row).allows(action)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def list_role_permissions(self, role: Optional[str] = None) -> dict[str, dict[str, PermissionSet]]:
        """Return {role: {module: PermissionSet}}, optionally for one role."""
        query = select(role_permissions).order_by(role_permissions.c.role_name, role_permissions.c.module_name)
        if role is not None:
            query = query.where(role_permissions.c.role_name == role)
        result: dict[str, dict[str, PermissionSet]] = {}
        for row in await self.db.all(query):
            result.setdefault(row["role_name"], {})[row["module_name"]] = _row_to_permission_set(row)
        return result

    async def get_role_permission(self, role: str, module: str) -> Optional[PermissionSet]:
        row = await self.db.get(
            select(role_permissions).where(
                (role_permissions.c.role_name == role) & (role_permissions.c.module_name == module)
            )
        )
        return _row_to_permission_set(row) if row is not None else None

    async def set_role_permission(self, role: str, module: str, perms: PermissionSet) -> None:
        """Create or replace the single row for (role, module)."""
        values = perms.as_dict()
        clause = (role_permissions.c.role_name == role) & (role_permissions.c.module_name == module)
        result = await self.db.run(update(role_permissions).where(clause).values(**values))
        if result.rowcount == 0:
            await self.db.run(
                insert(role_permissions).values(role_name=role, module_name=module, created_at=now_iso(), **values)
            )

    async def list_visibility_overrides(self, user_id: int) -> dict[str, bool]:
        rows = await self.db.all(
            select(user_module_visibility.c.module_name, user_module_visibility.c.is_visible).where(
                user_module_visibility.c.user_id == user_id
            )
        )
        return {r["module_name"]: bool(r["is_visible"]) for r in rows}

    async def set_module_visibility(
        self, user_id: int, module: str, is_visible: bool, actor_id: Optional[int] = None
    ) -> None:
        """Create or replace the override for (user, module)."""
        stamp = now_iso()
        clause = (user_module_visibility.c.user_id == user_id) & (user_module_visibility.c.module_name == module)
        result = await self.db.run(
            update(user_module_visibility)
            .where(clause)
            .values(is_visible=bool(is_visible), updated_at=stamp, updated_by=actor_id)
        )
        if result.rowcount == 0:
            await self.db.run(
                insert(user_module_visibility).values(
                    user_id=user_id,
                    module_name=module,
                    is_visible=bool(is_visible),
                    created_at=stamp,
                    updated_at=stamp,
                    created_by=actor_id,
                    updated_by=actor_id,
                )
            )
