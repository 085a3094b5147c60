"""
api/routes/v1/permissions.py -- Role permission matrix administration.

Routes:
  GET /api/v1/role-permissions                  -- administrator only (?role= filter)
  PUT /api/v1/role-permissions/{role}/{module}  -- administrator only, audited
  GET /api/v1/permissions/check                 -- any authenticated user, own role

Roles are a closed set (RoleEnum). Modules are free-form names matching
MODULE_NAME_PATTERN. There is at most one row per (role, module); PUT
replaces it.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request

from api.models import MODULE_NAME_PATTERN, ActionEnum, PermissionSetModel, RoleEnum, RolePermissionResponse
from audit.logger import AuditLogger, context_from_request
from auth.dependencies import get_current_claims, require_role
from auth.permissions import PermissionResolver
from core.models import Claims

router = APIRouter()


@router.get("/role-permissions", response_model=list[RolePermissionResponse])
async def list_role_permissions(
    request: Request,
    role: Optional[RoleEnum] = None,
    claims: Claims = Depends(require_role("administrator")),
) -> list[RolePermissionResponse]:
    resolver: PermissionResolver = request.app.state.permissions
    matrix = await resolver.list_role_permissions(role.value if role else None)
    return [
        RolePermissionResponse(role=role_name, module=module, **perms.as_dict())
        for role_name, modules in matrix.items()
        for module, perms in modules.items()
    ]


@router.put("/role-permissions/{role}/{module}", response_model=RolePermissionResponse)
async def set_role_permission(
    request: Request,
    role: RoleEnum,
    body: PermissionSetModel,
    module: str = Path(pattern=MODULE_NAME_PATTERN),
    claims: Claims = Depends(require_role("administrator")),
) -> RolePermissionResponse:
    """Create or replace the permission row for (role, module).

    Tokens already issued keep their role claim; the new flags apply to the
    next permission check for that role.
    """
    resolver: PermissionResolver = request.app.state.permissions
    audit: AuditLogger = request.app.state.audit

    before = await resolver.get_role_permission(role.value, module)
    await resolver.set_role_permission(role.value, module, body.to_domain())
    await audit.record(
        claims.id,
        "role_permissions",
        f"{role.value}:{module}",
        "UPDATE" if before is not None else "CREATE",
        before.as_dict() if before is not None else None,
        body.model_dump(),
        context_from_request(request),
    )
    return RolePermissionResponse(role=role.value, module=module, **body.model_dump())


@router.get("/permissions/check")
async def check_permission(
    request: Request,
    module: str = Query(pattern=MODULE_NAME_PATTERN),
    action: ActionEnum = Query(),
    claims: Claims = Depends(get_current_claims),
) -> dict:
    """Report whether the caller's role may perform action on module."""
    resolver: PermissionResolver = request.app.state.permissions
    allowed = await resolver.check_action(claims.role, module, action.value)
    return {"module": module, "action": action.value, "allowed": allowed}
