"""Schema endpoints feeding the builder's label / type / property menus."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from neo4j.exceptions import DriverError, Neo4jError

from graphdash.graph import schema
from graphdash.graph.models import LabelList, PropertyKeyList, RelationshipMap, RelationshipTypeList

router = APIRouter(prefix="/schema", tags=["schema"])


def _unavailable(e: Exception) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Graph database unavailable: {e}")


@router.get("/labels", response_model=LabelList)
async def list_labels():
    try:
        return LabelList(labels=await schema.get_labels())
    except (Neo4jError, DriverError) as e:
        raise _unavailable(e)


@router.get("/relationship-types", response_model=RelationshipTypeList)
async def list_relationship_types(
    from_label: Optional[str] = Query(default=None),
    to_label: Optional[str] = Query(default=None),
):
    """Relationship types, optionally restricted to the given endpoint labels."""
    try:
        types = await schema.get_relationship_types(from_label=from_label, to_label=to_label)
    except (Neo4jError, DriverError) as e:
        raise _unavailable(e)
    return RelationshipTypeList(types=types, from_label=from_label, to_label=to_label)


@router.get("/properties/{label}", response_model=PropertyKeyList)
async def list_property_keys(label: str):
    try:
        return PropertyKeyList(label=label, properties=await schema.get_property_keys(label))
    except (Neo4jError, DriverError) as e:
        raise _unavailable(e)


@router.get("/relationship-map", response_model=RelationshipMap)
async def relationship_map():
    try:
        return RelationshipMap(relationships=await schema.get_node_relationship_map())
    except (Neo4jError, DriverError) as e:
        raise _unavailable(e)
