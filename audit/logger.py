"""
audit/logger.py -- Append-only change trail for mutations and security events.

Every mutating operation calls record() once with the before/after state.
Security events that are not CRUD (login, failed login, password change)
go through record_activity(), which files them under the "user_activity"
table label.

Failure policy: an audit insert that fails is logged at ERROR and swallowed.
The operation being audited has already happened and must not be rolled back
or reported as failed because the trail could not be written.

Storage format (change_logs): old_values / new_values are JSON text. Key
names inside the blobs are whatever the caller passed; reporting tools only
depend on the column names.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from fastapi import Request
from sqlalchemy import insert

from core.db import Database
from core.models import ANONYMOUS, UNKNOWN, USER_ACTIVITY_TABLE, RequestContext
from core.schema import change_logs, now_iso

logger = logging.getLogger("netinv.audit")


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _serialize(state: Optional[Mapping[str, Any]]) -> Optional[str]:
    if state is None:
        return None
    return json.dumps(dict(state), default=str)


def summarize_changes(
    action: str, old_state: Optional[Mapping[str, Any]], new_state: Optional[Mapping[str, Any]]
) -> str:
    """Return "field: old → new" fragments for keys of new_state that changed.

    Only keys present in new_state are inspected, and a key missing from
    old_state is skipped. With no differences, or with either side missing,
    the summary is "<action> operation".
    """
    if not old_state or not new_state:
        return f"{action} operation"
    changes = [
        f"{key}: {_format_value(old_state[key])} → {_format_value(value)}"
        for key, value in new_state.items()
        if key in old_state and old_state[key] != value
    ]
    return ", ".join(changes) if changes else f"{action} operation"


def context_from_request(request: Request) -> RequestContext:
    """Capture client IP and User-Agent, defaulting each to "Unknown"."""
    ip_address = request.client.host if request.client else UNKNOWN
    return RequestContext(
        ip_address=ip_address or UNKNOWN,
        user_agent=request.headers.get("User-Agent") or UNKNOWN,
    )


class AuditLogger:
    """Writes AuditEntry rows. Never raises on storage failure."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _insert(self, **values) -> Optional[int]:
        try:
            result = await self.db.run(insert(change_logs).values(timestamp=now_iso(), **values))
        except Exception:
            logger.exception(
                "Failed to write audit entry (%s %s/%s)",
                values.get("action"),
                values.get("table_name"),
                values.get("record_id"),
            )
            return None
        return result.changed_row_id

    async def record(
        self,
        actor_id: int,
        table_name: str,
        record_id: Any,
        action: str,
        old_state: Optional[Mapping[str, Any]] = None,
        new_state: Optional[Mapping[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Optional[int]:
        """Persist one entry for a data mutation and return its id (None if the write failed).

        Raises ValueError for a missing actor: data mutations are never anonymous.
        """
        if actor_id is None:
            raise ValueError("audit record requires an actor id")
        context = context or RequestContext()
        return await self._insert(
            user_id=actor_id,
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            old_values=_serialize(old_state),
            new_values=_serialize(new_state),
            changes_summary=summarize_changes(action, old_state, new_state),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

    async def record_activity(
        self, user_id: Optional[int], action: str, details: Optional[Mapping[str, Any]] = None
    ) -> Optional[int]:
        """Persist a security event (login, login_failed...) under "user_activity".

        details becomes new_values; its ip_address / user_agent keys, when
        present, fill the origin columns. user_id None is only for events with
        no authenticated identity and is stored with record id "anonymous".
        """
        details = dict(details or {})
        return await self._insert(
            user_id=user_id,
            table_name=USER_ACTIVITY_TABLE,
            record_id=str(user_id) if user_id is not None else ANONYMOUS,
            action=action,
            old_values=None,
            new_values=_serialize(details),
            changes_summary=f"User {action}",
            ip_address=details.get("ip_address") or UNKNOWN,
            user_agent=details.get("user_agent") or UNKNOWN,
        )
