"""
auth/dependencies.py -- Authorization gate as FastAPI Depends() helpers.

Identity comes from one place: the Authorization: Bearer <token> header,
verified by app.state.tokens (TokenService). Verified claims are attached to
request.state.user for downstream handlers, which must treat them as read-only.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() raises Unauthenticated (401).
require_role(...) and require_permission(...) build guards that raise
Unauthenticated (no identity) or Forbidden (403). A storage failure inside
require_permission propagates as StorageError (500) -- it is never turned
into a denial.

The guards only decide whether the request continues; they write nothing.
The decision logic lives in enforce_role() / enforce_permission() so it can
be used outside FastAPI.

Layer rule: may import fastapi (for Depends/Request). No imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Union

from fastapi import Depends, Request

from auth.permissions import PermissionResolver
from core.errors import Forbidden, InvalidTokenError, Unauthenticated
from core.models import Claims

logger = logging.getLogger("netinv.auth")


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_claims(request: Request) -> Optional[Claims]:
    """Return verified claims for the request, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        claims = request.app.state.tokens.verify(token)
    except InvalidTokenError:
        return None
    request.state.user = claims
    return claims


def get_current_claims(request: Request) -> Claims:
    """Require a valid bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(get_current_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthenticated()
    try:
        claims = request.app.state.tokens.verify(token)
    except InvalidTokenError as exc:
        logger.info("Rejected token on %s: %s", request.url.path, exc.reason)
        raise
    request.state.user = claims
    return claims


# ---------------------------------------------------------------------------
# Decision functions
# ---------------------------------------------------------------------------


def enforce_role(claims: Optional[Claims], allowed: Union[str, Iterable[str]]) -> Claims:
    """Raise unless claims carry one of the allowed roles."""
    if claims is None:
        raise Unauthenticated()
    allowed_set = {allowed} if isinstance(allowed, str) else set(allowed)
    if claims.role not in allowed_set:
        raise Forbidden()
    return claims


async def enforce_permission(
    resolver: PermissionResolver, claims: Optional[Claims], module: str, action: str
) -> Claims:
    """Raise unless the claims' role has the action flag on module.

    StorageError from the resolver propagates.
    """
    if claims is None:
        raise Unauthenticated()
    if not await resolver.check_action(claims.role, module, action):
        raise Forbidden(f"Insufficient permissions for {action} on {module}.")
    return claims


# ---------------------------------------------------------------------------
# Guard factories
# ---------------------------------------------------------------------------


def require_role(allowed: Union[str, Iterable[str]]):
    """Build a dependency admitting only the given role (or set of roles).

        @router.get("/admin-only")
        async def route(claims: Claims = Depends(require_role("administrator"))): ...
    """
    allowed_roles = allowed if isinstance(allowed, str) else tuple(allowed)

    def _guard(claims: Optional[Claims] = Depends(try_get_current_claims)) -> Claims:
        return enforce_role(claims, allowed_roles)

    return _guard


def require_permission(module: str, action: str):
    """Build a dependency that checks role_permissions for (module, action).

        @router.post("/carriers")
        async def route(claims: Claims = Depends(require_permission("carriers", "create"))): ...
    """

    async def _guard(request: Request, claims: Optional[Claims] = Depends(try_get_current_claims)) -> Claims:
        resolver: PermissionResolver = request.app.state.permissions
        return await enforce_permission(resolver, claims, module, action)

    return _guard
