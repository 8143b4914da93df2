"""Schema collaborator: labels, relationship types and property keys for the builder menus."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from graphdash.config import settings
from graphdash.graph import neo4j_client
from graphdash.querybuilder.compiler import quote_name

log = logging.getLogger("graphdash.schema")


def _label_pattern(alias: str, label: Optional[str]) -> str:
    if label:
        return f"({alias}:{quote_name(label)})"
    return f"({alias})"


async def get_labels() -> List[str]:
    async with neo4j_client.get_session() as session:
        result = await session.run("CALL db.labels() YIELD label RETURN label ORDER BY label")
        records = await result.data()
    return [r["label"] for r in records]


async def get_relationship_types(
    from_label: Optional[str] = None,
    to_label: Optional[str] = None,
) -> List[str]:
    """All relationship types, or those seen between the given endpoint labels."""
    async with neo4j_client.get_session() as session:
        if not from_label and not to_label:
            result = await session.run(
                "CALL db.relationshipTypes() YIELD relationshipType "
                "RETURN relationshipType AS type ORDER BY type"
            )
        else:
            result = await session.run(
                f"MATCH {_label_pattern('a', from_label)}-[r]->{_label_pattern('b', to_label)} "
                "WITH r LIMIT $sample "
                "RETURN DISTINCT type(r) AS type ORDER BY type",
                sample=settings.schema_sample_size,
            )
        records = await result.data()
    return [r["type"] for r in records]


async def get_property_keys(label: str) -> List[str]:
    """Property keys found on a sample of nodes carrying `label`."""
    async with neo4j_client.get_session() as session:
        result = await session.run(
            f"MATCH {_label_pattern('n', label)} WITH n LIMIT $sample "
            "UNWIND keys(n) AS key RETURN DISTINCT key ORDER BY key",
            sample=settings.schema_sample_size,
        )
        records = await result.data()
    return [r["key"] for r in records]


async def get_node_relationship_map() -> Dict[str, List[str]]:
    """Map every label to its outgoing relationship types (empty list when none)."""
    labels = await get_labels()
    mapping: Dict[str, List[str]] = {label: [] for label in labels}
    async with neo4j_client.get_session() as session:
        result = await session.run(
            "MATCH (a)-[r]->() WITH labels(a) AS labels, type(r) AS type LIMIT $sample "
            "UNWIND labels AS label "
            "RETURN label, collect(DISTINCT type) AS types ORDER BY label",
            sample=settings.schema_sample_size,
        )
        records = await result.data()
    for r in records:
        mapping[r["label"]] = sorted(r["types"])
    log.debug("Relationship map covers %d labels", len(mapping))
    return mapping
