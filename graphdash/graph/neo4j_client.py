"""Process-wide Neo4j driver for the executor, schema menus and health probe.

The driver is created lazily by the first session request (or at server
startup) and shared by every builder session; a driver that cannot reach the
database is closed again instead of being cached.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession

from graphdash.config import settings

log = logging.getLogger("graphdash.neo4j")

_driver: AsyncDriver | None = None


async def init_driver() -> AsyncDriver:
    global _driver
    if _driver is not None:
        return _driver

    log.info("Connecting to Neo4j at %s (database=%s)", settings.neo4j_uri, settings.neo4j_database)
    driver = AsyncGraphDatabase.driver(
        settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password)
    )
    try:
        await driver.verify_connectivity()
    except Exception:
        await driver.close()
        raise
    _driver = driver
    return _driver


async def close_driver() -> None:
    """Release the shared driver; the next query reconnects."""
    global _driver
    if _driver is None:
        return
    await _driver.close()
    _driver = None
    log.info("Neo4j driver closed")


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Session on the configured database; callers choose read or write transactions."""
    driver = await init_driver()
    session = driver.session(database=settings.neo4j_database)
    try:
        yield session
    finally:
        await session.close()
