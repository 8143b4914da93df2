from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Cypher text submitted for execution or decompilation."""
    query: str


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class QueryResult(BaseModel):
    """Tabular outcome of one execution; failures are carried in `error`."""
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    error: Optional[str] = None
    elapsed_ms: float = 0.0
    is_write: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class LabelList(BaseModel):
    labels: List[str]


class RelationshipTypeList(BaseModel):
    types: List[str]
    from_label: Optional[str] = None
    to_label: Optional[str] = None


class PropertyKeyList(BaseModel):
    label: str
    properties: List[str]


class RelationshipMap(BaseModel):
    """Outgoing relationship types per node label."""
    relationships: Dict[str, List[str]] = Field(default_factory=dict)
