#!/usr/bin/env python3
"""
netinv-access admin CLI -- schema setup and account bootstrap.

Usage:
  python main.py init-db
  python main.py create-user alice --role provisioner --full-name "Alice Doe"
  python main.py show-permissions --role read_only

Reads the same environment as the API (DATABASE_URL, SECRET_KEY,
ENVIRONMENT, BCRYPT_ROUNDS). Passwords are prompted, never passed as
arguments, so they stay out of shell history.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from audit.logger import AuditLogger
from auth.permissions import PermissionResolver
from auth.store import UserStore, seed_defaults
from auth.tokens import hash_password
from core.config import Settings, get_settings
from core.db import Database
from core.models import ROLES, User


async def _init_db(settings: Settings) -> None:
    db = Database(settings.database_url)
    try:
        await seed_defaults(db, settings)
    finally:
        await db.close()
    print("  Schema ready, default role permissions seeded.")


async def _create_user(
    settings: Settings, username: str, role: str, password: str, full_name: Optional[str], email: Optional[str]
) -> int:
    db = Database(settings.database_url)
    try:
        await seed_defaults(db, settings)
        store = UserStore(db)
        if await store.get_by_username(username) is not None:
            print(f"  [!] User '{username}' already exists.")
            return 1
        user_id = await store.create_user(
            User(
                username=username,
                role=role,
                full_name=full_name,
                email=email,
                password_hash=hash_password(password, settings.bcrypt_rounds),
            )
        )
        await AuditLogger(db).record_activity(user_id, "bootstrap_create", {"username": username, "role": role})
    finally:
        await db.close()
    print(f"  Created user '{username}' (id={user_id}, role={role}).")
    return 0


async def _show_permissions(settings: Settings, role: Optional[str]) -> None:
    db = Database(settings.database_url)
    try:
        matrix = await PermissionResolver(db).list_role_permissions(role)
    finally:
        await db.close()
    for role_name, modules in matrix.items():
        print(f"\n{role_name}")
        print("─" * 40)
        for module, perms in modules.items():
            flags = "".join(
                letter if allowed else "-"
                for letter, allowed in zip("VCED", (perms.can_view, perms.can_create, perms.can_edit, perms.can_delete))
            )
            print(f"  {module:<20} {flags}")
    print()


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="netinv-access",
        description="Administration commands for the network inventory access-control service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create tables and seed default role permissions")

    create = sub.add_parser("create-user", help="Create an account (password is prompted)")
    create.add_argument("username")
    create.add_argument("--role", choices=ROLES, default="read_only")
    create.add_argument("--full-name", default=None)
    create.add_argument("--email", default=None)

    show = sub.add_parser("show-permissions", help="Print the role permission matrix")
    show.add_argument("--role", choices=ROLES, default=None)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()

    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        return 0

    if args.command == "create-user":
        password = getpass.getpass("Password: ")
        if len(password) < 8:
            print("  [!] Password must be at least 8 characters.")
            return 1
        if getpass.getpass("Confirm password: ") != password:
            print("  [!] Passwords do not match.")
            return 1
        return asyncio.run(_create_user(settings, args.username, args.role, password, args.full_name, args.email))

    asyncio.run(_show_permissions(settings, args.role))
    return 0


if __name__ == "__main__":
    sys.exit(main())
