"""Shared state and helpers used across multiple API routers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from graphdash.artifacts.saved_query import QueryHistoryItem
from graphdash.artifacts.storage_queries import add_history
from graphdash.config import settings
from graphdash.graph.executor import run_query
from graphdash.graph.models import QueryResult
from graphdash.querybuilder.controller import ExecutionController


async def execute_and_record(text: str) -> QueryResult:
    """Run a query through the executor and append it to the history."""
    result = await run_query(text)
    if text.strip():
        await add_history(QueryHistoryItem(
            query=text.strip(),
            result_count=result.count if result.ok else None,
            execution_time=result.elapsed_ms,
            error=result.error,
        ))
    return result


class BuilderSession:
    """One browser tab's builder: an id plus the controller that owns its model."""

    def __init__(self, session_id: Optional[str] = None):
        self.id = session_id or uuid4().hex
        self.created_at = datetime.now(timezone.utc)
        self.controller = ExecutionController(execute=execute_and_record)

    def state(self) -> dict:
        ctl = self.controller
        last = ctl.last_result
        return {
            "session_id": self.id,
            "created_at": self.created_at.isoformat(),
            "mode": ctl.mode.value,
            "settle_pending": ctl.settle_pending,
            "query": ctl.current_query_text(),
            "token": ctl.token,
            "share_query": f"{settings.token_param}={ctl.token}" if ctl.token else None,
            "execution_count": ctl.execution_count,
            "model": ctl.model.model_dump(mode="json", by_alias=True),
            "last_result": last.model_dump(mode="json") if last is not None else None,
        }

    def close(self) -> None:
        self.controller.close()


# Live builder sessions; models never leave the process, only tokens do
BUILDER_SESSIONS: dict[str, BuilderSession] = {}
