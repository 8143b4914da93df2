"""Tests for the SQLite saved-query library and execution history."""

from datetime import datetime, timedelta, timezone

import pytest

from graphdash.artifacts import storage_queries
from graphdash.artifacts.saved_query import QueryHistoryItem, QuerySource, SavedQuery
from graphdash.artifacts.storage_queries import (
    add_history,
    clear_history,
    delete_query,
    get_query,
    list_history,
    list_queries,
    record_execution,
    save_query,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _saved(**kwargs) -> SavedQuery:
    data = {"name": "People", "query": "MATCH (n1:Person) RETURN n1 LIMIT 10"}
    data.update(kwargs)
    return SavedQuery(**data)


class TestSavedQueries:
    @pytest.mark.asyncio
    async def test_save_and_get(self):
        saved = await save_query(_saved(tags=["people", "demo"], source=QuerySource.BUILDER, token="abc"))
        loaded = await get_query(saved.id)
        assert loaded.name == "People"
        assert loaded.tags == ["people", "demo"]
        assert loaded.source == QuerySource.BUILDER
        assert loaded.token == "abc"

    @pytest.mark.asyncio
    async def test_update_keeps_created_at_and_counters(self):
        first = await save_query(_saved(created_at=T0))
        await record_execution(first.id)
        updated = await save_query(_saved(id=first.id, name="Renamed", created_at=T0 + timedelta(days=3)))
        assert updated.name == "Renamed"
        assert updated.created_at == T0
        assert updated.execution_count == 1
        assert updated.executed_at is not None

    @pytest.mark.asyncio
    async def test_list_filters(self):
        await save_query(_saved(name="a", category="ops"))
        await save_query(_saved(name="b", category="ops", source=QuerySource.BUILDER))
        await save_query(_saved(name="c"))
        assert {q.name for q in await list_queries(category="ops")} == {"a", "b"}
        assert [q.name for q in await list_queries(source="builder")] == ["b"]
        assert len(await list_queries(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_delete(self):
        saved = await save_query(_saved())
        assert await delete_query(saved.id) is True
        assert await get_query(saved.id) is None
        assert await delete_query(saved.id) is False

    @pytest.mark.asyncio
    async def test_record_execution_unknown_id(self):
        assert await record_execution("missing") is None


class TestHistory:
    @pytest.mark.asyncio
    async def test_rerun_moves_query_to_top(self):
        await add_history(QueryHistoryItem(query="A", executed_at=T0))
        await add_history(QueryHistoryItem(query="B", executed_at=T0 + timedelta(seconds=1)))
        await add_history(QueryHistoryItem(query="A", executed_at=T0 + timedelta(seconds=2), result_count=4))
        history = await list_history()
        assert [h.query for h in history] == ["A", "B"]
        assert history[0].result_count == 4

    @pytest.mark.asyncio
    async def test_trimmed_to_max(self, monkeypatch):
        monkeypatch.setattr(storage_queries.settings, "history_max", 3)
        for i in range(5):
            await add_history(QueryHistoryItem(query=f"Q{i}", executed_at=T0 + timedelta(seconds=i)))
        assert [h.query for h in await list_history(limit=10)] == ["Q4", "Q3", "Q2"]

    @pytest.mark.asyncio
    async def test_clear(self):
        await add_history(QueryHistoryItem(query="A", error="boom"))
        assert await clear_history() == 1
        assert await list_history() == []
