"""
audit/store.py -- Read side of the change_logs trail.

Query-only by construction: there is no update or delete method. The write
side is audit/logger.py.
"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import or_, select

from core.db import Database
from core.models import AuditEntry
from core.schema import change_logs, users

_MAX_LIMIT = 500


def _like_pattern(search: str) -> str:
    """Substring pattern in which % and _ from the caller match literally."""
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _base_query():
    return select(change_logs, users.c.username).select_from(
        change_logs.outerjoin(users, change_logs.c.user_id == users.c.id)
    )


class AuditStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_entries(
        self,
        table_names: Optional[Sequence[str]] = None,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Return entries newest first, filtered by any combination of arguments.

        search is a case-insensitive substring match on the summary, the record
        id and the actor username.
        """
        query = _base_query()
        if table_names:
            query = query.where(change_logs.c.table_name.in_(list(table_names)))
        if user_id is not None:
            query = query.where(change_logs.c.user_id == user_id)
        if action:
            query = query.where(change_logs.c.action == action)
        if search:
            pattern = _like_pattern(search)
            query = query.where(
                or_(
                    change_logs.c.changes_summary.ilike(pattern, escape="\\"),
                    change_logs.c.record_id.ilike(pattern, escape="\\"),
                    users.c.username.ilike(pattern, escape="\\"),
                )
            )
        limit = max(1, min(limit, _MAX_LIMIT))
        query = query.order_by(change_logs.c.timestamp.desc(), change_logs.c.id.desc())
        query = query.limit(limit).offset(max(0, offset))
        return [_row_to_entry(r) for r in await self.db.all(query)]

    async def get_entry(self, entry_id: int) -> Optional[AuditEntry]:
        row = await self.db.get(_base_query().where(change_logs.c.id == entry_id))
        return _row_to_entry(row) if row is not None else None


def _row_to_entry(row: dict) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        user_id=row["user_id"],
        username=row.get("username"),
        table_name=row["table_name"],
        record_id=row["record_id"],
        action=row["action"],
        old_values=row["old_values"],
        new_values=row["new_values"],
        changes_summary=row["changes_summary"] or "",
        ip_address=row["ip_address"] or "",
        user_agent=row["user_agent"] or "",
        timestamp=row["timestamp"],
    )
