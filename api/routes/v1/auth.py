"""
api/routes/v1/auth.py -- Login, identity and password endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns bearer token + permissions
  GET  /api/v1/auth/me               -- current claims + freshly resolved permissions
  PUT  /api/v1/auth/change-password  -- verify current password, store a new hash

Security:
  POST /login is rate-limited per client IP (api.limiter).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_username() + verify_password().
  Wrong username and wrong password return the same "bad_credentials" error.
  Cache-Control: no-store on login responses.
  Password hashes never reach the audit trail.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    ClaimsResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    PermissionSetModel,
)
from audit.logger import AuditLogger, context_from_request
from auth.dependencies import get_current_claims
from auth.permissions import PermissionResolver
from auth.store import UserStore
from auth.tokens import TokenService, authenticate_user, hash_password, verify_password
from core.models import Claims, EffectivePermissions

# Auth policy:
# - POST /api/v1/auth/login:            public
# - GET  /api/v1/auth/me:               requires auth (get_current_claims)
# - PUT  /api/v1/auth/change-password:  requires auth (get_current_claims)
router = APIRouter()


def _permission_payload(effective: EffectivePermissions) -> dict:
    return {
        "permissions": {m: PermissionSetModel.from_domain(p) for m, p in effective.permissions.items()},
        "visibility": effective.visibility,
    }


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a 24h bearer token.

    Success stamps last_login and records a "login" activity. Failure records
    an anonymous "login_failed" activity carrying the attempted username.
    """
    user_store: UserStore = request.app.state.user_store
    audit: AuditLogger = request.app.state.audit
    tokens: TokenService = request.app.state.tokens
    resolver: PermissionResolver = request.app.state.permissions
    ctx = context_from_request(request)

    user = await authenticate_user(user_store, body.username, body.password)
    if user is None:
        await audit.record_activity(
            None,
            "login_failed",
            {"username": body.username, "ip_address": ctx.ip_address, "user_agent": ctx.user_agent},
        )
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    await user_store.update_last_login(user.id)
    await audit.record_activity(
        user.id,
        "login",
        {"username": user.username, "ip_address": ctx.ip_address, "user_agent": ctx.user_agent},
    )

    token = tokens.issue(user)
    effective = await resolver.resolve_permissions_with_visibility(user.id)
    claims = Claims(id=user.id, username=user.username, full_name=user.display_name, role=user.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=tokens.expire_seconds,
            user=ClaimsResponse.from_claims(claims),
            **_permission_payload(effective),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request, claims: Claims = Depends(get_current_claims)) -> MeResponse:
    """Return the token's claims with permissions resolved against current storage.

    The claims themselves are not refreshed: a role change shows up in
    "permissions" here but "user.role" keeps the value from the token.
    """
    resolver: PermissionResolver = request.app.state.permissions
    effective = await resolver.resolve_permissions_with_visibility(claims.id)
    return MeResponse(user=ClaimsResponse.from_claims(claims), **_permission_payload(effective))


@router.put("/auth/change-password")
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: Claims = Depends(get_current_claims),
) -> dict:
    """Replace the caller's password after verifying the current one."""
    user_store: UserStore = request.app.state.user_store
    audit: AuditLogger = request.app.state.audit

    user = await user_store.get_by_id(claims.id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=404,
            detail={"code": "user_not_found", "message": "User not found or inactive."},
        )
    if not verify_password(body.current_password, user.password_hash or ""):
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_credentials", "message": "Current password is incorrect."},
        )

    rounds = request.app.state.settings.bcrypt_rounds
    await user_store.update_user(user.id, password_hash=hash_password(body.new_password, rounds))
    await audit.record(
        claims.id,
        "users",
        user.id,
        "UPDATE",
        None,
        {"password_changed": True},
        context_from_request(request),
    )
    return {"message": "Password updated."}
