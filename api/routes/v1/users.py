"""
api/routes/v1/users.py -- User administration and per-user module visibility.

Routes:
  GET   /api/v1/users                              -- user_management:view
  GET   /api/v1/users/{id}                         -- user_management:view
  POST  /api/v1/users                              -- user_management:create
  PATCH /api/v1/users/{id}                         -- user_management:edit
  GET   /api/v1/users/{id}/visibility              -- administrator only
  PUT   /api/v1/users/{id}/visibility/{module}     -- administrator only

Every mutation writes one audit entry with before/after state. Password
hashes are never part of that state.

PATCH blocks self-deactivation and removing the last active administrator
(deactivation or demotion). There is no DELETE: status="inactive" is the
deactivation mechanism.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Request

from api.models import MODULE_NAME_PATTERN, UserCreate, UserPatch, UserResponse, VisibilityResponse, VisibilityUpdate
from audit.logger import AuditLogger, context_from_request
from auth.dependencies import require_permission, require_role
from auth.permissions import PermissionResolver
from auth.store import UserStore
from auth.tokens import hash_password
from core.errors import UserNotFoundError
from core.models import Claims, User

router = APIRouter()


def _audit_state(user: User) -> dict:
    return {
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "user_role": user.role,
        "status": user.status,
    }


async def _get_user_or_404(store: UserStore, user_id: int) -> User:
    user = await store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    claims: Claims = Depends(require_permission("user_management", "view")),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in await user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    claims: Claims = Depends(require_permission("user_management", "view")),
) -> UserResponse:
    return UserResponse.from_user(await _get_user_or_404(request.app.state.user_store, user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    claims: Claims = Depends(require_permission("user_management", "create")),
) -> UserResponse:
    """Create an account. Usernames and emails must be unique."""
    user_store: UserStore = request.app.state.user_store
    audit: AuditLogger = request.app.state.audit

    if await user_store.get_by_username(body.username) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        )
    if body.email and await user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        )

    rounds = request.app.state.settings.bcrypt_rounds
    user_id = await user_store.create_user(
        User(
            username=body.username,
            password_hash=hash_password(body.password, rounds),
            email=body.email,
            full_name=body.full_name,
            role=body.role.value,
        )
    )
    created = await _get_user_or_404(user_store, user_id)
    await audit.record(
        claims.id, "users", user_id, "CREATE", None, _audit_state(created), context_from_request(request)
    )
    return UserResponse.from_user(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    claims: Claims = Depends(require_permission("user_management", "edit")),
) -> UserResponse:
    """Update profile fields, role or status."""
    user_store: UserStore = request.app.state.user_store
    audit: AuditLogger = request.app.state.audit

    target = await _get_user_or_404(user_store, user_id)
    updates = body.model_dump(exclude_none=True)
    if "role" in updates:
        updates["role"] = body.role.value
    if "status" in updates:
        updates["status"] = body.status.value
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    if updates.get("status") == "inactive" and target.id == claims.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    removes_admin = target.role == "administrator" and target.is_active and (
        updates.get("status") == "inactive" or updates.get("role", "administrator") != "administrator"
    )
    if removes_admin and await user_store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active administrator."},
        )
    if "email" in updates and updates["email"] != target.email:
        other = await user_store.get_by_email(updates["email"])
        if other is not None and other.id != target.id:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "A user with that email already exists."},
            )

    await user_store.update_user(user_id, **updates)
    updated = await _get_user_or_404(user_store, user_id)
    await audit.record(
        claims.id,
        "users",
        user_id,
        "UPDATE",
        _audit_state(target),
        _audit_state(updated),
        context_from_request(request),
    )
    return UserResponse.from_user(updated)


# ---------------------------------------------------------------------------
# Module visibility (administrator only)
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/visibility", response_model=VisibilityResponse)
async def get_visibility(
    request: Request,
    user_id: int,
    claims: Claims = Depends(require_role("administrator")),
) -> VisibilityResponse:
    """Effective visibility map for an active user, plus the raw overrides."""
    resolver: PermissionResolver = request.app.state.permissions
    effective = await resolver.resolve_permissions_with_visibility(user_id)
    overrides = await resolver.list_visibility_overrides(user_id)
    return VisibilityResponse(user_id=user_id, visibility=effective.visibility, overrides=overrides)


@router.put("/users/{user_id}/visibility/{module}", response_model=VisibilityResponse)
async def set_visibility(
    request: Request,
    user_id: int,
    body: VisibilityUpdate,
    module: str = Path(pattern=MODULE_NAME_PATTERN),
    claims: Claims = Depends(require_role("administrator")),
) -> VisibilityResponse:
    """Show or hide one module for one user. Does not change what the user may do."""
    resolver: PermissionResolver = request.app.state.permissions
    audit: AuditLogger = request.app.state.audit
    target = await _get_user_or_404(request.app.state.user_store, user_id)
    if not target.is_active:
        raise UserNotFoundError(user_id)

    before = await resolver.list_visibility_overrides(user_id)
    await resolver.set_module_visibility(user_id, module, body.is_visible, actor_id=claims.id)
    await audit.record(
        claims.id,
        "user_module_visibility",
        f"{user_id}:{module}",
        "UPDATE" if module in before else "CREATE",
        {"is_visible": before[module]} if module in before else None,
        {"is_visible": body.is_visible},
        context_from_request(request),
    )

    overrides = await resolver.list_visibility_overrides(user_id)
    effective = await resolver.resolve_permissions_with_visibility(user_id)
    return VisibilityResponse(user_id=user_id, visibility=effective.visibility, overrides=overrides)
