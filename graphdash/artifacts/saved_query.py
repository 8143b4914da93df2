from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuerySource(str, Enum):
    BUILDER = "builder"
    CYPHER = "cypher"
    LIBRARY = "library"


class SavedQuery(BaseModel):
    """A named query the user kept for later, from the builder or the editor."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    query: str = Field(..., min_length=1)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: QuerySource = QuerySource.CYPHER
    token: Optional[str] = None     # builder state, when saved from the builder

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    executed_at: Optional[datetime] = None
    execution_count: int = 0


class SavedQueryCreate(BaseModel):
    """Request body for saving a query; `id` updates an existing entry."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    query: str = Field(..., min_length=1)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: QuerySource = QuerySource.CYPHER
    token: Optional[str] = None


class QueryHistoryItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    query: str
    executed_at: datetime = Field(default_factory=_now)
    result_count: Optional[int] = None
    execution_time: Optional[float] = None  # ms
    error: Optional[str] = None
