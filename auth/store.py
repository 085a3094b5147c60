"""
auth/store.py -- Credential store over the async storage collaborator.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters via SQLAlchemy Core constructs.
  update_user() only accepts whitelisted column names.

No hard delete. Deactivation is update_user(user_id, status="inactive").

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, insert, select, update

from auth.tokens import hash_password
from core.config import Settings
from core.db import Database
from core.models import User
from core.schema import DEFAULT_ROLE_PERMISSIONS, now_iso, role_permissions, users

logger = logging.getLogger("netinv.auth.store")

# Columns update_user() may touch. Keys are the dataclass field names.
_UPDATABLE: dict[str, str] = {
    "email": "email",
    "full_name": "full_name",
    "role": "user_role",
    "status": "status",
    "password_hash": "password_hash",
}


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(db)
        uid = await store.create_user(User(username="admin", role="administrator",
                                           password_hash=hash_password("secret")))
        user = await store.get_by_id(uid)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def has_users(self) -> bool:
        row = await self.db.get(select(func.count().label("n")).select_from(users))
        return bool(row and row["n"])

    async def create_user(self, user: User) -> int:
        """Insert a new user and return its id.

        Raises StorageError if the username or email already exists.
        """
        stamp = now_iso()
        result = await self.db.run(
            insert(users).values(
                username=user.username,
                password_hash=user.password_hash,
                email=user.email,
                full_name=user.full_name,
                user_role=user.role,
                status=user.status,
                created_at=stamp,
                updated_at=stamp,
            )
        )
        return result.changed_row_id

    async def get_by_id(self, user_id: int) -> Optional[User]:
        row = await self.db.get(select(users).where(users.c.id == user_id))
        return _row_to_user(row) if row is not None else None

    async def get_by_username(self, username: str) -> Optional[User]:
        """Exact, case-sensitive lookup."""
        row = await self.db.get(select(users).where(users.c.username == username))
        return _row_to_user(row) if row is not None else None

    async def get_by_email(self, email: str) -> Optional[User]:
        row = await self.db.get(select(users).where(users.c.email == email))
        return _row_to_user(row) if row is not None else None

    async def list_users(self) -> list[User]:
        rows = await self.db.all(select(users).order_by(users.c.username))
        return [_row_to_user(r) for r in rows]

    async def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields. Returns False if user_id was not found.

        Unknown field names raise ValueError before any SQL is issued.
        """
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        values = {_UPDATABLE[k]: v for k, v in fields.items()}
        values["updated_at"] = now_iso()
        result = await self.db.run(update(users).where(users.c.id == user_id).values(**values))
        return result.rowcount > 0

    async def update_last_login(self, user_id: int) -> None:
        await self.db.run(update(users).where(users.c.id == user_id).values(last_login=now_iso()))

    async def count_active_admins(self) -> int:
        row = await self.db.get(
            select(func.count().label("n"))
            .select_from(users)
            .where((users.c.user_role == "administrator") & (users.c.status == "active"))
        )
        return int(row["n"]) if row else 0


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


async def seed_defaults(db: Database, settings: Settings) -> None:
    """Create the schema, seed default role permissions and the bootstrap admin.

    Idempotent: existing (role, module) rows are left untouched, so edits made
    through the API survive restarts.
    """
    await db.create_all()

    existing = {
        (r["role_name"], r["module_name"])
        for r in await db.all(select(role_permissions.c.role_name, role_permissions.c.module_name))
    }
    stamp = now_iso()
    for role, modules in DEFAULT_ROLE_PERMISSIONS.items():
        for module, (view, create, edit, delete) in modules.items():
            if (role, module) in existing:
                continue
            await db.run(
                insert(role_permissions).values(
                    role_name=role,
                    module_name=module,
                    can_view=bool(view),
                    can_create=bool(create),
                    can_edit=bool(edit),
                    can_delete=bool(delete),
                    created_at=stamp,
                )
            )

    store = UserStore(db)
    if settings.bootstrap_admin_password and not await store.has_users():
        await store.create_user(
            User(
                username="admin",
                role="administrator",
                full_name="System Administrator",
                password_hash=hash_password(settings.bootstrap_admin_password, settings.bcrypt_rounds),
            )
        )
        logger.info("Bootstrap administrator account created")


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row: dict) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password_hash"],
        email=row["email"],
        full_name=row["full_name"],
        role=row["user_role"],
        status=row["status"],
        created_at=row["created_at"] or "",
        updated_at=row["updated_at"] or "",
        last_login=row["last_login"],
    )
