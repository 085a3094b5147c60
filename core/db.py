"""
core/db.py -- Async storage collaborator over SQLAlchemy's AsyncEngine.

Three calls, each one statement in its own connection and transaction:

    row  = await db.get(query, params)    # first row as dict, or None
    rows = await db.all(query, params)    # every row as a list of dicts
    res  = await db.run(query, params)    # RunResult(changed_row_id, rowcount)

query is either a SQLAlchemy Core statement or a SQL string (wrapped in
text() with named :params). The atomicity unit is a single call: callers that
chain several lookups get no transaction around them.

Any SQLAlchemyError is logged with full detail and re-raised as StorageError,
so no driver exception type leaks past this module.

Usage:
    db = Database("sqlite+aiosqlite:///netinv.db")
    await db.create_all()
    await db.close()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from core.errors import StorageError
from core.schema import metadata

logger = logging.getLogger("netinv.db")


@dataclass
class RunResult:
    changed_row_id: Optional[int] = None
    rowcount: int = 0


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode per connection (PRAGMAs are not inherited)."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _statement(query):
    return text(query) if isinstance(query, str) else query


class Database:
    """Thin async wrapper that owns the engine for the process lifetime."""

    def __init__(self, url: str) -> None:
        kwargs: dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            # One shared connection, otherwise every pooled connection would
            # open its own empty in-memory database.
            if ":memory:" in url or "mode=memory" in url:
                kwargs["poolclass"] = StaticPool
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _set_wal_mode)

    async def create_all(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as exc:
            logger.exception("Schema creation failed")
            raise StorageError("schema creation failed") from exc

    async def get(self, query, params: Optional[dict] = None) -> Optional[dict]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(_statement(query), params or {})
                row = result.mappings().first()
        except SQLAlchemyError as exc:
            logger.exception("Storage get failed")
            raise StorageError("storage read failed") from exc
        return dict(row) if row is not None else None

    async def all(self, query, params: Optional[dict] = None) -> list[dict]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(_statement(query), params or {})
                rows = result.mappings().all()
        except SQLAlchemyError as exc:
            logger.exception("Storage all failed")
            raise StorageError("storage read failed") from exc
        return [dict(r) for r in rows]

    async def run(self, query, params: Optional[dict] = None) -> RunResult:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(_statement(query), params or {})
                # Only inserts report a row id; an UPDATE's lastrowid is stale.
                changed_row_id = None
                if result.is_insert and result.inserted_primary_key:
                    changed_row_id = result.inserted_primary_key[0]
                return RunResult(changed_row_id=changed_row_id, rowcount=result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.exception("Storage write failed")
            raise StorageError("storage write failed") from exc

    async def ping(self) -> bool:
        try:
            await self.get("SELECT 1 AS ok")
        except StorageError:
            return False
        return True

    async def close(self) -> None:
        await self.engine.dispose()
