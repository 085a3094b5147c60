"""
api/main.py -- FastAPI application factory for the access-control service.

create_app(settings) builds a fully wired app from one Settings object:
  - TokenService is constructed here with the settings' signing key, once.
  - The lifespan opens the Database, creates/seeds the schema and attaches
    the stores to app.state; shutdown disposes the engine.

Nothing is created at import time. asgi.py calls create_app(get_settings()).

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. request logging    -- method, path, status, latency, client host

Error mapping (every response uses the ErrorResponse envelope):
  Unauthenticated / InvalidTokenError -> 401   Forbidden    -> 403
  UserNotFoundError                   -> 404   StorageError -> 500
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.change_logs import router as change_logs_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.users import router as users_router
from audit.logger import AuditLogger
from audit.store import AuditStore
from auth.permissions import PermissionResolver
from auth.store import UserStore, seed_defaults
from auth.tokens import TokenService
from core.config import Settings
from core.db import Database
from core.errors import Forbidden, StorageError, Unauthenticated, UserNotFoundError

VERSION = "1.0.0"

logger = logging.getLogger("netinv.api")


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _attach_services(app: FastAPI, db: Database) -> None:
    app.state.db = db
    app.state.user_store = UserStore(db)
    app.state.permissions = PermissionResolver(db)
    app.state.audit = AuditLogger(db)
    app.state.audit_store = AuditStore(db)


def create_app(settings: Settings) -> FastAPI:
    """Build the ASGI app. The settings object is the only configuration source."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Access-control API starting up (environment=%s)", settings.environment)
        db = Database(settings.database_url)
        await seed_defaults(db, settings)
        _attach_services(app, db)
        logger.info("Database ready")

        yield

        await db.close()
        logger.info("Access-control API shutdown complete")

    app = FastAPI(
        title="Network Inventory Access Control API",
        description="Role-based access control and change audit for the network inventory database.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.tokens = TokenService(settings)
    app.state.limiter = limiter

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # ------------------------------------------------------------------
    # Routers
    # ------------------------------------------------------------------

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
    app.include_router(users_router, prefix="/api/v1", tags=["Users"])
    app.include_router(permissions_router, prefix="/api/v1", tags=["Role Permissions"])
    app.include_router(change_logs_router, prefix="/api/v1", tags=["Change Logs"])

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(Unauthenticated)
    async def unauthenticated_handler(request: Request, exc: Unauthenticated) -> JSONResponse:
        # InvalidTokenError lands here too; the body never says why the token failed.
        response = _error(401, "unauthorized", "Authentication required.")
        response.headers["WWW-Authenticate"] = "Bearer"
        return response

    @app.exception_handler(Forbidden)
    async def forbidden_handler(request: Request, exc: Forbidden) -> JSONResponse:
        return _error(403, "forbidden", str(exc))

    @app.exception_handler(UserNotFoundError)
    async def user_not_found_handler(request: Request, exc: UserNotFoundError) -> JSONResponse:
        return _error(404, "user_not_found", "User not found or inactive.")

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        # Full detail was logged by core.db; the client gets a generic message.
        logger.error("Storage failure on %s %s", request.method, request.url.path)
        return _error(500, "storage_error", "A storage error occurred.")

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        retry_after = int(getattr(exc, "retry_after", 60))
        response = _error(429, "rate_limited", "Too many requests.", str(exc))
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Route handlers raise HTTPException with a {"code", "message"} dict as detail."""
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
        return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error(500, "internal_error", "An unexpected error occurred.")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/api/v1/health", tags=["Health"])
    async def health(request: Request) -> HealthResponse:
        """Return liveness, version and a database round-trip check. No auth."""
        database_ok = await request.app.state.db.ping()
        return HealthResponse(
            version=VERSION,
            components={"app": "ok", "database": "ok" if database_ok else "error"},
        )

    return app
