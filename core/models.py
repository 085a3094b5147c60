"""
core/models.py -- Domain dataclasses and constants for access control and audit.

Pure data containers with zero I/O. Stores map rows into these; routes map
these into pydantic transport models (api/models.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

ROLES: tuple[str, ...] = ("administrator", "provisioner", "read_only")

ACTIONS: tuple[str, ...] = ("view", "create", "edit", "delete")

USER_STATUSES: tuple[str, ...] = ("active", "inactive")

# Modules every user sees in the visibility map, whether or not their role has
# a role_permissions row for them.
MODULE_REGISTRY: tuple[str, ...] = (
    "network_routes",
    "network_design",
    "exchange_rates",
    "exchange_data",
    "locations",
    "carriers",
    "cnx_colocation",
    "bulk_upload",
    "change_logs",
    "user_management",
)

USER_ACTIVITY_TABLE = "user_activity"
UNKNOWN = "Unknown"
ANONYMOUS = "anonymous"


@dataclass
class User:
    """An identity record. id is None before the row is written.

    role holds the users.user_role column. Users are never hard-deleted;
    status="inactive" is the deactivation mechanism.
    """

    username: str
    role: str = "read_only"
    id: Optional[int] = None
    password_hash: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    status: str = "active"
    created_at: str = ""
    updated_at: str = ""
    last_login: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


@dataclass(frozen=True)
class PermissionSet:
    """Capabilities one role has on one module. The four flags are independent."""

    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def allows(self, action: str) -> bool:
        """Return the flag for action. Unknown actions are denied."""
        if action not in ACTIONS:
            return False
        return getattr(self, f"can_{action}")

    def as_dict(self) -> dict[str, bool]:
        return {
            "can_view": self.can_view,
            "can_create": self.can_create,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
        }


@dataclass
class EffectivePermissions:
    permissions: dict[str, PermissionSet] = field(default_factory=dict)
    visibility: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class Claims:
    """Decoded token payload attached to request.state.user. Read-only."""

    id: int
    username: str
    full_name: str
    role: str

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username, "full_name": self.full_name, "role": self.role}


@dataclass(frozen=True)
class RequestContext:
    """Network origin of a request, stored on every audit entry."""

    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN


@dataclass
class AuditEntry:
    """One row of the change_logs trail. Never updated or deleted."""

    user_id: Optional[int]
    table_name: str
    record_id: str
    action: str  # CREATE | UPDATE | DELETE or an activity label such as "login"
    id: Optional[int] = None
    old_values: Optional[str] = None  # JSON text
    new_values: Optional[str] = None  # JSON text
    changes_summary: str = ""
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN
    timestamp: str = ""
    username: Optional[str] = None  # joined from users on read, not stored
