"""Query Graph Model: the structured representation behind the visual builder.

A QueryModel owns its nodes, relationships, conditions, projection and limit
outright. Every builder action is one of the mutation methods below; each
mutation leaves the model structurally valid (no dangling references, unique
aliases) or raises ModelValidationError without changing anything.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from graphdash.config import settings

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Words that cannot be used as a bare variable without confusing the parser.
RESERVED_WORDS = frozenset({
    "AND", "AS", "BY", "CALL", "CONTAINS", "CREATE", "DELETE", "DETACH",
    "DISTINCT", "ENDS", "FALSE", "IN", "IS", "LIMIT", "MATCH", "MERGE", "NOT",
    "NULL", "OPTIONAL", "OR", "ORDER", "REMOVE", "RETURN", "SET", "SKIP",
    "STARTS", "TRUE", "UNION", "UNWIND", "WHERE", "WITH", "XOR",
})

_UNSET: Any = object()


class ModelValidationError(ValueError):
    """A QueryModel violates a structural invariant (dangling reference, alias clash, ...)."""


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class CombineMode(str, Enum):
    AND = "AND"
    OR = "OR"
    MATCH = "MATCH"
    OPTIONAL_MATCH = "OPTIONAL_MATCH"


class Operator(str, Enum):
    EQ = "="
    NE = "<>"
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS WITH"
    ENDS_WITH = "ENDS WITH"

    @property
    def is_string_match(self) -> bool:
        return self in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH)

    @classmethod
    def parse(cls, raw: str) -> "Operator":
        """Normalize user/text spellings (`!=`, `starts  with`) to an Operator."""
        text = " ".join(str(raw).split()).upper()
        if text == "!=":
            return cls.NE
        return cls(text)


class LimitMode(str, Enum):
    ROWS = "rows"
    NODES = "nodes"


class QueryNode(BaseModel):
    """A node pattern in the builder (not a database node)."""
    id: str = Field(default_factory=lambda: _new_id("node"))
    label: Optional[str] = None     # None matches any label
    alias: str

    @field_validator("label", mode="before")
    @classmethod
    def _blank_label_is_none(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class QueryRelationship(BaseModel):
    """A directed relationship pattern between two QueryNodes."""
    id: str = Field(default_factory=lambda: _new_id("rel"))
    type: Optional[str] = None      # None matches any relationship type
    from_id: str = Field(..., alias="from")
    to_id: str = Field(..., alias="to")
    alias: str
    combine_mode: CombineMode = CombineMode.AND
    enabled: bool = True

    model_config = {"populate_by_name": True}

    @field_validator("type", mode="before")
    @classmethod
    def _blank_type_is_none(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class QueryCondition(BaseModel):
    """A binary property comparison on one node: `alias.property OP value`."""
    id: str = Field(default_factory=lambda: _new_id("cond"))
    node_id: str
    property: str = ""
    operator: Operator = Operator.EQ
    value: str = ""
    enabled: bool = True

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v):
        if isinstance(v, Operator):
            return v
        return Operator.parse(v)

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_text(cls, v):
        if v is None:
            return ""
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)

    # `property` names a field in this class body, so this stays a plain method
    def is_complete(self) -> bool:
        return bool(self.property.strip()) and self.value != ""


class Limit(BaseModel):
    count: int = Field(default_factory=lambda: settings.default_limit)
    mode: LimitMode = LimitMode.ROWS

    @field_validator("count", mode="before")
    @classmethod
    def _default_invalid_count(cls, v):
        try:
            count = int(str(v).strip())
        except (TypeError, ValueError):
            return settings.default_limit
        return count if count > 0 else settings.default_limit

    @field_validator("mode", mode="before")
    @classmethod
    def _lowercase_mode(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class QueryModel(BaseModel):
    """The single live query graph of a builder session."""
    nodes: List[QueryNode] = Field(default_factory=list)
    relationships: List[QueryRelationship] = Field(default_factory=list)
    conditions: List[QueryCondition] = Field(default_factory=list)
    projection: List[str] = Field(default_factory=list)  # node ids, RETURN order
    limit: Limit = Field(default_factory=Limit)

    # ── Lookups ─────────────────────────────────────────────────

    def node(self, node_id: str) -> QueryNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise ModelValidationError(f"Unknown node id: {node_id!r}")

    def node_by_alias(self, alias: str) -> Optional[QueryNode]:
        return next((n for n in self.nodes if n.alias == alias), None)

    def relationship(self, rel_id: str) -> QueryRelationship:
        for rel in self.relationships:
            if rel.id == rel_id:
                return rel
        raise ModelValidationError(f"Unknown relationship id: {rel_id!r}")

    def condition(self, cond_id: str) -> QueryCondition:
        for cond in self.conditions:
            if cond.id == cond_id:
                return cond
        raise ModelValidationError(f"Unknown condition id: {cond_id!r}")

    def has_node(self, node_id: str) -> bool:
        return any(n.id == node_id for n in self.nodes)

    def enabled_relationships(self) -> List[QueryRelationship]:
        return [r for r in self.relationships if r.enabled]

    def enabled_conditions(self) -> List[QueryCondition]:
        return [c for c in self.conditions if c.enabled]

    def effective_projection(self) -> List[QueryNode]:
        """Projected nodes in RETURN order; all nodes in model order when unset."""
        if self.projection:
            return [self.node(node_id) for node_id in self.projection]
        return list(self.nodes)

    def enabled_state(self) -> Dict[str, bool]:
        """id -> enabled for every relationship and condition."""
        state = {r.id: r.enabled for r in self.relationships}
        state.update({c.id: c.enabled for c in self.conditions})
        return state

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    # ── Alias helpers ───────────────────────────────────────────

    def _aliases(self, exclude_id: Optional[str] = None) -> set[str]:
        taken = {n.alias for n in self.nodes if n.id != exclude_id}
        taken.update(r.alias for r in self.relationships if r.id != exclude_id)
        return taken

    def _next_alias(self, prefix: str) -> str:
        taken = self._aliases()
        index = 1
        while f"{prefix}{index}" in taken:
            index += 1
        return f"{prefix}{index}"

    def _check_alias(self, alias: str, exclude_id: Optional[str] = None) -> str:
        alias = alias.strip()
        if not IDENTIFIER_RE.match(alias) or alias.upper() in RESERVED_WORDS:
            raise ModelValidationError(f"Invalid alias: {alias!r}")
        if alias in self._aliases(exclude_id):
            raise ModelValidationError(f"Duplicate alias: {alias!r}")
        return alias

    # ── Nodes ───────────────────────────────────────────────────

    def add_node(self, label: Optional[str] = None, alias: Optional[str] = None) -> QueryNode:
        alias = self._check_alias(alias) if alias else self._next_alias("n")
        node = QueryNode(label=label, alias=alias)
        self.nodes.append(node)
        return node

    def update_node(self, node_id: str, *, label: Any = _UNSET, alias: Optional[str] = None) -> QueryNode:
        node = self.node(node_id)
        if alias is not None and alias != node.alias:
            node.alias = self._check_alias(alias, exclude_id=node_id)
        if label is not _UNSET:
            node.label = QueryNode._blank_label_is_none(label)
        return node

    def remove_node(self, node_id: str) -> None:
        """Remove a node and everything that references it."""
        self.node(node_id)
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.relationships = [
            r for r in self.relationships if r.from_id != node_id and r.to_id != node_id
        ]
        self.conditions = [c for c in self.conditions if c.node_id != node_id]
        self.projection = [p for p in self.projection if p != node_id]

    def reorder_nodes(self, from_index: int, to_index: int) -> None:
        if not (0 <= from_index < len(self.nodes)) or not (0 <= to_index < len(self.nodes)):
            raise ModelValidationError("Node index out of range")
        node = self.nodes.pop(from_index)
        self.nodes.insert(to_index, node)

    # ── Relationships ───────────────────────────────────────────

    def add_relationship(
        self,
        from_id: str,
        to_id: str,
        type: Optional[str] = None,
        alias: Optional[str] = None,
        combine_mode: Optional[CombineMode] = None,
        enabled: bool = True,
    ) -> QueryRelationship:
        self.node(from_id)
        self.node(to_id)
        alias = self._check_alias(alias) if alias else self._next_alias("r")
        if combine_mode is None:
            combine_mode = CombineMode.OPTIONAL_MATCH if self.relationships else CombineMode.AND
        rel = QueryRelationship(
            type=type,
            from_id=from_id,
            to_id=to_id,
            alias=alias,
            combine_mode=CombineMode(combine_mode),
            enabled=enabled,
        )
        self.relationships.append(rel)
        return rel

    def update_relationship(
        self,
        rel_id: str,
        *,
        type: Any = _UNSET,
        from_id: Optional[str] = None,
        to_id: Optional[str] = None,
        alias: Optional[str] = None,
        combine_mode: Optional[CombineMode] = None,
        enabled: Optional[bool] = None,
    ) -> QueryRelationship:
        rel = self.relationship(rel_id)
        if from_id is not None:
            self.node(from_id)
        if to_id is not None:
            self.node(to_id)
        if alias is not None and alias != rel.alias:
            rel.alias = self._check_alias(alias, exclude_id=rel_id)

        endpoints_changed = (
            (from_id is not None and from_id != rel.from_id)
            or (to_id is not None and to_id != rel.to_id)
        )
        if from_id is not None:
            rel.from_id = from_id
        if to_id is not None:
            rel.to_id = to_id
        if endpoints_changed:
            # the old type may not exist between the new endpoint labels
            rel.type = None
        if type is not _UNSET:
            rel.type = QueryRelationship._blank_type_is_none(type)
        if combine_mode is not None:
            rel.combine_mode = CombineMode(combine_mode)
        if enabled is not None:
            rel.enabled = bool(enabled)
        return rel

    def set_relationship_enabled(self, rel_id: str, enabled: bool) -> bool:
        """Returns True when the flag actually changed."""
        rel = self.relationship(rel_id)
        changed = rel.enabled != bool(enabled)
        rel.enabled = bool(enabled)
        return changed

    def remove_relationship(self, rel_id: str) -> None:
        self.relationship(rel_id)
        self.relationships = [r for r in self.relationships if r.id != rel_id]

    # ── Conditions ──────────────────────────────────────────────

    def add_condition(
        self,
        node_id: str,
        property: str = "",
        operator: Operator | str = Operator.EQ,
        value: str = "",
        enabled: bool = True,
    ) -> QueryCondition:
        self.node(node_id)
        cond = QueryCondition(
            node_id=node_id,
            property=property,
            operator=operator,
            value=value,
            enabled=enabled,
        )
        self.conditions.append(cond)
        return cond

    def update_condition(
        self,
        cond_id: str,
        *,
        node_id: Optional[str] = None,
        property: Optional[str] = None,
        operator: Operator | str | None = None,
        value: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> QueryCondition:
        cond = self.condition(cond_id)
        if node_id is not None:
            self.node(node_id)
            cond.node_id = node_id
        if property is not None:
            cond.property = property
        if operator is not None:
            cond.operator = Operator.parse(operator) if not isinstance(operator, Operator) else operator
        if value is not None:
            cond.value = QueryCondition._value_as_text(value)
        if enabled is not None:
            cond.enabled = bool(enabled)
        return cond

    def set_condition_enabled(self, cond_id: str, enabled: bool) -> bool:
        cond = self.condition(cond_id)
        changed = cond.enabled != bool(enabled)
        cond.enabled = bool(enabled)
        return changed

    def remove_condition(self, cond_id: str) -> None:
        self.condition(cond_id)
        self.conditions = [c for c in self.conditions if c.id != cond_id]

    # ── Projection / limit ──────────────────────────────────────

    def set_projection(self, node_ids: List[str]) -> None:
        if len(set(node_ids)) != len(node_ids):
            raise ModelValidationError("Projection contains duplicate nodes")
        for node_id in node_ids:
            self.node(node_id)
        self.projection = list(node_ids)

    def add_to_projection(self, node_id: str) -> None:
        self.node(node_id)
        if node_id in self.projection:
            raise ModelValidationError(f"Node already projected: {node_id!r}")
        self.projection.append(node_id)

    def remove_from_projection(self, node_id: str) -> None:
        self.projection = [p for p in self.projection if p != node_id]

    def move_projection(self, from_index: int, to_index: int) -> None:
        size = len(self.projection)
        if not (0 <= from_index < size) or not (0 <= to_index < size):
            raise ModelValidationError("Projection index out of range")
        node_id = self.projection.pop(from_index)
        self.projection.insert(to_index, node_id)

    def set_limit(self, count: Any = None, mode: Optional[LimitMode | str] = None) -> Limit:
        self.limit = Limit(
            count=self.limit.count if count is None else count,
            mode=self.limit.mode if mode is None else mode,
        )
        return self.limit

    def clear(self) -> None:
        self.nodes = []
        self.relationships = []
        self.conditions = []
        self.projection = []
        self.limit = Limit()

    # ── Integrity ───────────────────────────────────────────────

    def check_integrity(self) -> None:
        """Raise ModelValidationError unless every invariant holds.

        Models assembled through the mutation methods always pass; this guards
        models deserialized from API payloads before they are compiled.
        """
        seen: set[str] = set()
        for item in [*self.nodes, *self.relationships]:
            if not IDENTIFIER_RE.match(item.alias) or item.alias.upper() in RESERVED_WORDS:
                raise ModelValidationError(f"Invalid alias: {item.alias!r}")
            if item.alias in seen:
                raise ModelValidationError(f"Duplicate alias: {item.alias!r}")
            seen.add(item.alias)

        node_ids = [n.id for n in self.nodes]
        if len(set(node_ids)) != len(node_ids):
            raise ModelValidationError("Duplicate node ids")
        known = set(node_ids)
        for rel in self.relationships:
            if rel.from_id not in known or rel.to_id not in known:
                raise ModelValidationError(f"Relationship {rel.alias!r} references a missing node")
        for cond in self.conditions:
            if cond.node_id not in known:
                raise ModelValidationError(f"Condition {cond.id!r} references a missing node")
        if len(set(self.projection)) != len(self.projection):
            raise ModelValidationError("Projection contains duplicate nodes")
        for node_id in self.projection:
            if node_id not in known:
                raise ModelValidationError(f"Projection references a missing node: {node_id!r}")
