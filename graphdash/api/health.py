"""Health check probes for the dashboard's infrastructure dependencies.

Each checker returns (ok: bool, detail: str) and only reads.
"""

from __future__ import annotations

import logging
import time

import aiosqlite

log = logging.getLogger("graphdash.health")


async def check_neo4j() -> tuple[bool, str]:
    """Verify Neo4j connectivity."""
    try:
        from graphdash.graph import neo4j_client
        t0 = time.monotonic()
        async with neo4j_client.get_session() as session:
            result = await session.run("RETURN 1 AS n")
            record = await result.single()
            ms = round((time.monotonic() - t0) * 1000)
            if record and record["n"] == 1:
                return True, f"ok ({ms}ms)"
            return False, "unexpected result"
    except Exception as e:
        log.warning("Neo4j health check failed: %s", e)
        return False, str(e)


async def check_queries_db() -> tuple[bool, str]:
    """Open the saved-query store and count its entries."""
    try:
        from graphdash.artifacts import storage_queries
        await storage_queries.init_queries_db()
        t0 = time.monotonic()
        async with aiosqlite.connect(storage_queries.DB_PATH.as_posix()) as db:
            async with db.execute("SELECT count(*) FROM saved_queries") as cur:
                row = await cur.fetchone()
        ms = round((time.monotonic() - t0) * 1000)
        return True, f"ok ({row[0]} saved queries, {ms}ms)"
    except Exception as e:
        log.warning("Query store health check failed: %s", e)
        return False, str(e)


async def run_all_checks() -> dict:
    """Run all health checks and return structured result.

    Returns:
        {
            "status": "healthy" | "degraded" | "unhealthy",
            "checks": {
                "neo4j":      {"ok": bool, "detail": str},
                "queries_db": {"ok": bool, "detail": str},
            }
        }

    - healthy:  all checks pass
    - degraded: query store OK but Neo4j is down (the builder still compiles)
    - unhealthy: query store is down
    """
    neo_ok, neo_detail = await check_neo4j()
    db_ok, db_detail = await check_queries_db()

    checks = {
        "neo4j": {"ok": neo_ok, "detail": neo_detail},
        "queries_db": {"ok": db_ok, "detail": db_detail},
    }

    if all(c["ok"] for c in checks.values()):
        status = "healthy"
    elif db_ok:
        status = "degraded"
    else:
        status = "unhealthy"

    return {"status": status, "checks": checks}
