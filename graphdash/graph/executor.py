"""Execution collaborator: run Cypher text and return JSON-safe rows or an error."""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from neo4j.exceptions import DriverError, Neo4jError
from neo4j.graph import Node, Path, Relationship

from graphdash.config import settings
from graphdash.graph import neo4j_client
from graphdash.graph.models import QueryResult

log = logging.getLogger("graphdash.executor")

_STRING_LITERAL_RE = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"|`(?:[^`]|``)*`", re.DOTALL)
_WRITE_RE = re.compile(r"\b(SET|CREATE|MERGE|DELETE|REMOVE|DROP|DETACH\s+DELETE)\b", re.IGNORECASE)
_DESTRUCTIVE_RE = re.compile(r"\b(DROP|DELETE)\b", re.IGNORECASE)
_MATCH_RE = re.compile(r"\bMATCH\b", re.IGNORECASE)


def _strip_literals(text: str) -> str:
    # keywords inside quoted values or quoted names do not count
    return _STRING_LITERAL_RE.sub("''", text)


def is_write_query(text: str) -> bool:
    return _WRITE_RE.search(_strip_literals(text)) is not None


def is_destructive_query(text: str) -> bool:
    """DROP/DELETE with no MATCH to scope it."""
    bare = _strip_literals(text)
    return _DESTRUCTIVE_RE.search(bare) is not None and _MATCH_RE.search(bare) is None


def _destructive_allowed() -> bool:
    return settings.is_dev_env or settings.allow_destructive_queries


# ── Value conversion ────────────────────────────────────────────

def _sanitize_props(props: dict) -> dict:
    return {k: to_json_value(v) for k, v in props.items()}


def to_json_value(value: Any) -> Any:
    """Convert Neo4j values (graph entities, temporal types, ...) to JSON-safe data."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return {
            "nodes": [to_json_value(n) for n in value.nodes],
            "relationships": [to_json_value(r) for r in value.relationships],
        }
    if isinstance(value, Node):
        return {
            "id": value.element_id,
            "labels": sorted(value.labels),
            "properties": _sanitize_props(dict(value)),
        }
    if isinstance(value, Relationship):
        return {
            "id": value.element_id,
            "type": value.type,
            "start": value.start_node.element_id if value.start_node else None,
            "end": value.end_node.element_id if value.end_node else None,
            "properties": _sanitize_props(dict(value)),
        }
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if hasattr(value, "iso_format"):
        return value.iso_format()
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


async def _collect(tx, text: str) -> list[dict]:
    result = await tx.run(text)
    rows = []
    async for record in result:
        rows.append({key: to_json_value(record[key]) for key in record.keys()})
    return rows


async def run_query(text: str) -> QueryResult:
    """Execute `text`; database failures come back in `QueryResult.error`."""
    text = (text or "").strip()
    if not text:
        return QueryResult()

    is_write = is_write_query(text)
    if is_destructive_query(text) and not _destructive_allowed():
        log.warning("Refused destructive query in %s environment", settings.app_env)
        return QueryResult(
            error="Destructive operations are not allowed in this environment",
            is_write=True,
        )

    t0 = time.monotonic()
    try:
        async with neo4j_client.get_session() as session:
            if is_write:
                rows = await session.execute_write(_collect, text)
            else:
                rows = await session.execute_read(_collect, text)
    except (Neo4jError, DriverError) as e:
        elapsed = round((time.monotonic() - t0) * 1000, 2)
        message = getattr(e, "message", None) or str(e) or type(e).__name__
        log.warning("Query failed after %sms: %s", elapsed, message)
        return QueryResult(error=message, elapsed_ms=elapsed, is_write=is_write)

    elapsed = round((time.monotonic() - t0) * 1000, 2)
    log.info("Query returned %d rows in %sms (write=%s)", len(rows), elapsed, is_write)
    return QueryResult(rows=rows, count=len(rows), elapsed_ms=elapsed, is_write=is_write)
