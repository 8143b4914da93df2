"""Saved query library and execution history endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from graphdash.artifacts.saved_query import (
    QueryHistoryItem,
    QuerySource,
    SavedQuery,
    SavedQueryCreate,
)
from graphdash.artifacts.storage_queries import (
    clear_history,
    delete_query,
    get_query,
    list_history,
    list_queries,
    record_execution,
    save_query,
)

router = APIRouter(tags=["queries"])


@router.get("/queries", response_model=List[SavedQuery])
async def get_saved_queries(
    category: Optional[str] = Query(default=None),
    source: Optional[QuerySource] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
):
    return await list_queries(
        category=category,
        source=source.value if source else None,
        limit=limit,
    )


@router.post("/queries", response_model=SavedQuery)
async def save_saved_query(req: SavedQueryCreate):
    """Save a new query, or update the one with `req.id`."""
    data = req.model_dump(exclude_unset=True, exclude_none=True)
    if req.id:
        existing = await get_query(req.id)
        if existing:
            data = {**existing.model_dump(), **data}
    return await save_query(SavedQuery.model_validate(data))


@router.get("/queries/{query_id}", response_model=SavedQuery)
async def get_saved_query(query_id: str):
    query = await get_query(query_id)
    if not query:
        raise HTTPException(status_code=404, detail="Saved query not found")
    return query


@router.delete("/queries/{query_id}")
async def delete_saved_query(query_id: str):
    if not await delete_query(query_id):
        raise HTTPException(status_code=404, detail="Saved query not found")
    return {"status": "deleted", "id": query_id}


@router.post("/queries/{query_id}/executed", response_model=SavedQuery)
async def mark_executed(query_id: str):
    query = await record_execution(query_id)
    if not query:
        raise HTTPException(status_code=404, detail="Saved query not found")
    return query


@router.get("/history", response_model=List[QueryHistoryItem])
async def get_history(limit: Optional[int] = Query(default=None, ge=1, le=500)):
    return await list_history(limit=limit)


@router.delete("/history")
async def delete_history():
    removed = await clear_history()
    return {"status": "cleared", "removed": removed}
