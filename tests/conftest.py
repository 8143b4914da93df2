"""Shared fixtures for graph dashboard tests.

Strategy: mock Neo4j and point the SQLite query store at a temp directory
so tests run without any live infrastructure.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from graphdash.querybuilder.models import CombineMode, QueryModel


@pytest.fixture(autouse=True)
def _clear_builder_sessions():
    """Clear shared BUILDER_SESSIONS before each test."""
    from graphdash.api.shared import BUILDER_SESSIONS
    BUILDER_SESSIONS.clear()
    yield
    for session in BUILDER_SESSIONS.values():
        session.close()
    BUILDER_SESSIONS.clear()


@pytest.fixture(autouse=True)
def queries_db(tmp_path, monkeypatch):
    """Redirect the saved-query / history store to a per-test SQLite file."""
    path = tmp_path / "queries.sqlite3"
    monkeypatch.setattr("graphdash.artifacts.storage_queries.DB_PATH", path)
    return path


def make_example_model() -> QueryModel:
    """(Person)-[:WORKS_AT]->(Company) with a name condition on the person."""
    model = QueryModel()
    person = model.add_node(label="Person")
    company = model.add_node(label="Company")
    model.add_relationship(person.id, company.id, type="WORKS_AT", combine_mode=CombineMode.MATCH)
    model.add_condition(person.id, property="name", operator="=", value="Alice")
    model.set_projection([person.id, company.id])
    return model


# ---------------------------------------------------------------------------
# Mock Neo4j
# ---------------------------------------------------------------------------

class MockNeo4jResult:
    def __init__(self, records=None):
        self._records = list(records or [])

    async def single(self):
        return self._records[0] if self._records else {"n": 1}

    async def data(self):
        return list(self._records)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for record in self._records:
            yield record


class MockNeo4jSession:
    """Records every statement; returns `records` (or the next `records_by_call` entry) from run()."""

    def __init__(self):
        self.records: list[dict] = []
        self.records_by_call: list[list[dict]] = []
        self.queries: list[tuple[str, dict]] = []
        self.transactions: list[str] = []
        self.error: Exception | None = None

    async def run(self, query, **kwargs):
        self.queries.append((query, kwargs))
        if self.error is not None:
            raise self.error
        if self.records_by_call:
            return MockNeo4jResult(self.records_by_call.pop(0))
        return MockNeo4jResult(self.records)

    async def execute_read(self, fn, *args, **kwargs):
        self.transactions.append("read")
        return await fn(self, *args, **kwargs)

    async def execute_write(self, fn, *args, **kwargs):
        self.transactions.append("write")
        return await fn(self, *args, **kwargs)

    async def close(self):
        pass


@pytest.fixture
def mock_neo4j(monkeypatch):
    """Patch Neo4j to avoid real connections; yields the shared mock session."""
    session = MockNeo4jSession()

    @asynccontextmanager
    async def _mock_get_session():
        yield session

    monkeypatch.setattr("graphdash.graph.neo4j_client.get_session", _mock_get_session)
    return session
