from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiosqlite

from graphdash.artifacts.saved_query import QueryHistoryItem, SavedQuery
from graphdash.config import settings

log = logging.getLogger("graphdash.storage")

DB_PATH = Path(settings.queries_db_path)

CREATE_SAVED_SQL = """
CREATE TABLE IF NOT EXISTS saved_queries (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT,
  query TEXT NOT NULL,
  category TEXT,
  tags TEXT NOT NULL,
  source TEXT NOT NULL,
  token TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  executed_at TEXT,
  execution_count INTEGER NOT NULL DEFAULT 0
);
"""

CREATE_HISTORY_SQL = """
CREATE TABLE IF NOT EXISTS query_history (
  id TEXT PRIMARY KEY,
  query TEXT NOT NULL UNIQUE,
  executed_at TEXT NOT NULL,
  result_count INTEGER,
  execution_time REAL,
  error TEXT
);
"""

_SAVED_COLUMNS = (
    "id, name, description, query, category, tags, source, token, "
    "created_at, updated_at, executed_at, execution_count"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _row_to_saved(row) -> SavedQuery:
    return SavedQuery(
        id=row[0],
        name=row[1],
        description=row[2],
        query=row[3],
        category=row[4],
        tags=json.loads(row[5]),
        source=row[6],
        token=row[7],
        created_at=datetime.fromisoformat(row[8]),
        updated_at=datetime.fromisoformat(row[9]),
        executed_at=datetime.fromisoformat(row[10]) if row[10] else None,
        execution_count=row[11],
    )


async def init_queries_db() -> None:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        await db.execute(CREATE_SAVED_SQL)
        await db.execute(CREATE_HISTORY_SQL)
        await db.commit()


# ── Saved queries ───────────────────────────────────────────────

async def save_query(query: SavedQuery) -> SavedQuery:
    """Insert or update; an existing entry keeps its created_at and counters."""
    await init_queries_db()
    query.updated_at = datetime.now(timezone.utc)
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        await db.execute(
            f"INSERT INTO saved_queries({_SAVED_COLUMNS}) "
            "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, description=excluded.description, "
            "query=excluded.query, category=excluded.category, tags=excluded.tags, "
            "source=excluded.source, token=excluded.token, updated_at=excluded.updated_at",
            (
                query.id,
                query.name,
                query.description,
                query.query,
                query.category,
                json.dumps(query.tags),
                query.source.value,
                query.token,
                _ts(query.created_at),
                _ts(query.updated_at),
                _ts(query.executed_at),
                query.execution_count,
            ),
        )
        await db.commit()
    saved = await get_query(query.id)
    return saved if saved is not None else query


async def get_query(query_id: str) -> Optional[SavedQuery]:
    await init_queries_db()
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        async with db.execute(
            f"SELECT {_SAVED_COLUMNS} FROM saved_queries WHERE id = ?", (query_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_saved(row) if row else None


async def list_queries(
    category: Optional[str] = None,
    source: Optional[str] = None,
    limit: int = 100,
) -> List[SavedQuery]:
    """Saved queries, most recently updated first."""
    await init_queries_db()
    clauses, params = [], []
    if category:
        clauses.append("category = ?")
        params.append(category)
    if source:
        clauses.append("source = ?")
        params.append(source)
    where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
    out: List[SavedQuery] = []
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        async with db.execute(
            f"SELECT {_SAVED_COLUMNS} FROM saved_queries {where}ORDER BY updated_at DESC LIMIT ?",
            (*params, limit),
        ) as cur:
            async for row in cur:
                out.append(_row_to_saved(row))
    return out


async def delete_query(query_id: str) -> bool:
    await init_queries_db()
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        cursor = await db.execute("DELETE FROM saved_queries WHERE id = ?", (query_id,))
        await db.commit()
        return cursor.rowcount > 0


async def record_execution(query_id: str) -> Optional[SavedQuery]:
    """Bump the execution counter of a saved query."""
    await init_queries_db()
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        cursor = await db.execute(
            "UPDATE saved_queries SET execution_count = execution_count + 1, executed_at = ? "
            "WHERE id = ?",
            (_ts(datetime.now(timezone.utc)), query_id),
        )
        await db.commit()
        if cursor.rowcount == 0:
            return None
    return await get_query(query_id)


# ── History ─────────────────────────────────────────────────────

async def add_history(item: QueryHistoryItem) -> QueryHistoryItem:
    """Record an execution; re-running a query moves it to the top."""
    await init_queries_db()
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        await db.execute("DELETE FROM query_history WHERE query = ?", (item.query,))
        await db.execute(
            "INSERT INTO query_history(id, query, executed_at, result_count, execution_time, error) "
            "VALUES(?, ?, ?, ?, ?, ?)",
            (
                item.id,
                item.query,
                _ts(item.executed_at),
                item.result_count,
                item.execution_time,
                item.error,
            ),
        )
        # keep only the newest entries
        await db.execute(
            "DELETE FROM query_history WHERE id NOT IN "
            "(SELECT id FROM query_history ORDER BY executed_at DESC LIMIT ?)",
            (settings.history_max,),
        )
        await db.commit()
    return item


async def list_history(limit: Optional[int] = None) -> List[QueryHistoryItem]:
    await init_queries_db()
    out: List[QueryHistoryItem] = []
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        async with db.execute(
            "SELECT id, query, executed_at, result_count, execution_time, error "
            "FROM query_history ORDER BY executed_at DESC LIMIT ?",
            (limit or settings.history_max,),
        ) as cur:
            async for row in cur:
                out.append(QueryHistoryItem(
                    id=row[0],
                    query=row[1],
                    executed_at=datetime.fromisoformat(row[2]),
                    result_count=row[3],
                    execution_time=row[4],
                    error=row[5],
                ))
    return out


async def clear_history() -> int:
    await init_queries_db()
    async with aiosqlite.connect(DB_PATH.as_posix()) as db:
        cursor = await db.execute("DELETE FROM query_history")
        await db.commit()
        log.info("Cleared %d history entries", cursor.rowcount)
        return cursor.rowcount
