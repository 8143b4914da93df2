"""Tests for health check logic."""

import pytest
from unittest.mock import patch

from graphdash.api.health import check_queries_db, run_all_checks


class TestHealthAggregation:
    """Test the health status aggregation logic without real infrastructure."""

    @pytest.mark.asyncio
    async def test_all_healthy(self):
        with patch("graphdash.api.health.check_neo4j", return_value=(True, "ok (5ms)")), \
             patch("graphdash.api.health.check_queries_db", return_value=(True, "ok (3 saved queries, 1ms)")):
            result = await run_all_checks()

        assert result["status"] == "healthy"
        assert all(c["ok"] for c in result["checks"].values())

    @pytest.mark.asyncio
    async def test_neo4j_down_is_degraded(self):
        with patch("graphdash.api.health.check_neo4j", return_value=(False, "connection refused")), \
             patch("graphdash.api.health.check_queries_db", return_value=(True, "ok")):
            result = await run_all_checks()

        assert result["status"] == "degraded"
        assert result["checks"]["queries_db"]["ok"] is True
        assert result["checks"]["neo4j"]["ok"] is False

    @pytest.mark.asyncio
    async def test_query_store_down_is_unhealthy(self):
        with patch("graphdash.api.health.check_neo4j", return_value=(True, "ok")), \
             patch("graphdash.api.health.check_queries_db", return_value=(False, "disk I/O error")):
            result = await run_all_checks()

        assert result["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_checks_include_detail_strings(self):
        with patch("graphdash.api.health.check_neo4j", return_value=(False, "bolt://db:7687 unreachable")), \
             patch("graphdash.api.health.check_queries_db", return_value=(True, "ok (0 saved queries, 1ms)")):
            result = await run_all_checks()

        assert "unreachable" in result["checks"]["neo4j"]["detail"]
        assert "saved queries" in result["checks"]["queries_db"]["detail"]


class TestProbes:
    @pytest.mark.asyncio
    async def test_neo4j_probe_against_mock(self, mock_neo4j):
        mock_neo4j.records = [{"n": 1}]
        with patch("graphdash.api.health.check_queries_db", return_value=(True, "ok")):
            result = await run_all_checks()
        assert result["checks"]["neo4j"]["ok"] is True
        assert mock_neo4j.queries[0][0] == "RETURN 1 AS n"

    @pytest.mark.asyncio
    async def test_queries_db_probe_uses_temp_store(self, queries_db):
        ok, detail = await check_queries_db()
        assert ok
        assert detail.startswith("ok (0 saved queries")
        assert queries_db.exists()
