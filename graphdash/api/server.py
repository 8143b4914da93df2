"""FastAPI application for the graph dashboard backend.

Run with:
    uvicorn graphdash.api.server:app --reload
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from graphdash.api.health import run_all_checks
from graphdash.api.routes import builder, query, saved, schema
from graphdash.api.shared import BUILDER_SESSIONS
from graphdash.artifacts.storage_queries import init_queries_db
from graphdash.config import settings
from graphdash.graph.neo4j_client import close_driver, init_driver

log = logging.getLogger("graphdash")

app = FastAPI(title="Graph Dashboard API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router)
app.include_router(builder.router)
app.include_router(schema.router)
app.include_router(saved.router)


@app.on_event("startup")
async def _startup():
    await init_queries_db()
    try:
        await init_driver()
    except Exception as e:
        log.warning("Neo4j not available at startup: %s", e)


@app.on_event("shutdown")
async def _shutdown():
    for session in BUILDER_SESSIONS.values():
        session.close()
    BUILDER_SESSIONS.clear()
    await close_driver()


@app.get("/health")
async def health():
    return await run_all_checks()
