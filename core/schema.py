"""
core/schema.py -- SQLAlchemy Core table definitions and default seed data.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py stay the
authoritative domain representation. Column names are the on-disk contract
that reporting and export tooling reads -- do not rename them.

Timestamps are ISO 8601 UTC strings, written by the stores.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Integer, MetaData, String, Table, Text, UniqueConstraint

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("email", String(255), unique=True),
    Column("full_name", String(255)),
    Column("user_role", String(50), nullable=False, server_default="read_only"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_name", String(50), nullable=False),
    Column("module_name", String(100), nullable=False),
    Column("can_view", Boolean, nullable=False, server_default="0"),
    Column("can_create", Boolean, nullable=False, server_default="0"),
    Column("can_edit", Boolean, nullable=False, server_default="0"),
    Column("can_delete", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("role_name", "module_name", name="uq_role_module"),
)

user_module_visibility = Table(
    "user_module_visibility",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("module_name", String(100), nullable=False),
    Column("is_visible", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("created_by", Integer, ForeignKey("users.id")),
    Column("updated_by", Integer, ForeignKey("users.id")),
    UniqueConstraint("user_id", "module_name", name="uq_user_module"),
)

# user_id is NULL only for anonymous lifecycle events (failed login for an
# unknown username). Data mutations always carry a real actor.
change_logs = Table(
    "change_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("table_name", String(100), nullable=False),
    Column("record_id", String(100), nullable=False),
    Column("action", String(50), nullable=False),
    Column("old_values", Text),
    Column("new_values", Text),
    Column("changes_summary", Text),
    Column("timestamp", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

# (view, create, edit, delete) per (role, module). Missing pairs mean no access.
DEFAULT_ROLE_PERMISSIONS: dict[str, dict[str, tuple[int, int, int, int]]] = {
    "administrator": {
        "network_routes": (1, 1, 1, 1),
        "carriers": (1, 1, 1, 1),
        "locations": (1, 1, 1, 1),
        "network_design": (1, 1, 1, 1),
        "exchange_rates": (1, 1, 1, 1),
        "exchange_data": (1, 1, 1, 1),
        "change_logs": (1, 0, 0, 0),
        "user_management": (1, 1, 1, 1),
    },
    "provisioner": {
        "network_routes": (1, 1, 1, 0),
        "carriers": (1, 1, 1, 0),
        "locations": (1, 1, 1, 0),
        "network_design": (1, 1, 1, 0),
        "exchange_rates": (1, 0, 0, 0),
        "exchange_data": (1, 0, 1, 0),
        "change_logs": (1, 0, 0, 0),
        "user_management": (0, 0, 0, 0),
    },
    "read_only": {
        "network_routes": (1, 0, 0, 0),
        "carriers": (1, 0, 0, 0),
        "locations": (1, 0, 0, 0),
        "network_design": (1, 1, 1, 0),
        "exchange_rates": (1, 0, 0, 0),
        "exchange_data": (1, 0, 0, 0),
        "change_logs": (0, 0, 0, 0),
        "user_management": (0, 0, 0, 0),
    },
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
