"""
api/routes/v1/change_logs.py -- Read-only access to the audit trail.

Routes:
  GET /api/v1/change-logs        -- change_logs:view, filterable, newest first
  GET /api/v1/change-logs/{id}   -- change_logs:view

Query parameters for the list:
  table_names (repeatable), user_id, action, search, limit (1-500), offset
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import AuditEntryResponse
from audit.store import AuditStore
from auth.dependencies import require_permission
from core.models import Claims

router = APIRouter()


@router.get("/change-logs", response_model=list[AuditEntryResponse])
async def list_change_logs(
    request: Request,
    table_names: Optional[list[str]] = Query(default=None),
    user_id: Optional[int] = None,
    action: Optional[str] = Query(default=None, max_length=50),
    search: Optional[str] = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    claims: Claims = Depends(require_permission("change_logs", "view")),
) -> list[AuditEntryResponse]:
    store: AuditStore = request.app.state.audit_store
    entries = await store.list_entries(
        table_names=table_names,
        user_id=user_id,
        action=action,
        search=search,
        limit=limit,
        offset=offset,
    )
    return [AuditEntryResponse.from_entry(e) for e in entries]


@router.get("/change-logs/{entry_id}", response_model=AuditEntryResponse)
async def get_change_log(
    request: Request,
    entry_id: int,
    claims: Claims = Depends(require_permission("change_logs", "view")),
) -> AuditEntryResponse:
    store: AuditStore = request.app.state.audit_store
    entry = await store.get_entry(entry_id)
    if entry is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Change log entry not found."},
        )
    return AuditEntryResponse.from_entry(entry)
