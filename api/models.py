"""
API request and response models for the access-control REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in core/models.py, which own the internal domain
representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from core.models import AuditEntry, Claims, PermissionSet, User

MODULE_NAME_PATTERN = r"^[a-z][a-z0-9_]{0,99}$"

# Passwords are never stripped: the exact characters submitted are what gets hashed.
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
ProfileText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    administrator = "administrator"
    provisioner = "provisioner"
    read_only = "read_only"


class StatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"


class ActionEnum(str, Enum):
    view = "view"
    create = "create"
    edit = "edit"
    delete = "delete"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PermissionSetModel(BaseModel):
    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False

    @classmethod
    def from_domain(cls, perms: PermissionSet) -> "PermissionSetModel":
        return cls(**perms.as_dict())

    def to_domain(self) -> PermissionSet:
        return PermissionSet(
            can_view=self.can_view,
            can_create=self.can_create,
            can_edit=self.can_edit,
            can_delete=self.can_delete,
        )


class RolePermissionResponse(PermissionSetModel):
    role: str
    module: str


class VisibilityUpdate(BaseModel):
    is_visible: bool


class VisibilityResponse(BaseModel):
    """Effective visibility for a user plus the explicit overrides behind it."""

    user_id: int
    visibility: dict[str, bool]
    overrides: dict[str, bool]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: Username
    password: str = Field(min_length=1, max_length=255)


class ClaimsResponse(BaseModel):
    id: int
    username: str
    full_name: str
    role: str

    @classmethod
    def from_claims(cls, claims: Claims) -> "ClaimsResponse":
        return cls(**claims.as_dict())


class MeResponse(BaseModel):
    user: ClaimsResponse
    permissions: dict[str, PermissionSetModel]
    visibility: dict[str, bool]


class LoginResponse(MeResponse):
    token: str
    token_type: str = "bearer"
    expires_in: int


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=255)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    username: Username
    password: str = Field(min_length=8, max_length=255)
    email: Optional[ProfileText] = None
    full_name: Optional[ProfileText] = None
    role: RoleEnum = RoleEnum.read_only


class UserPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[RoleEnum] = None
    status: Optional[StatusEnum] = None


class UserResponse(BaseModel):
    id: int
    username: str
    email: Optional[str]
    full_name: Optional[str]
    role: str
    status: str
    created_at: str
    updated_at: str
    last_login: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
            status=user.status,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login=user.last_login,
        )


# ---------------------------------------------------------------------------
# Change logs
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int]
    username: Optional[str]
    table_name: str
    record_id: str
    action: str
    old_values: Optional[str]
    new_values: Optional[str]
    changes_summary: str
    ip_address: str
    user_agent: str
    timestamp: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            username=entry.username,
            table_name=entry.table_name,
            record_id=entry.record_id,
            action=entry.action,
            old_values=entry.old_values,
            new_values=entry.new_values,
            changes_summary=entry.changes_summary,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            timestamp=entry.timestamp,
        )
