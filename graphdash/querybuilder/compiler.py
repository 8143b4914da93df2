"""Compile a QueryModel into Cypher text."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Set, Tuple

from graphdash.querybuilder.models import (
    IDENTIFIER_RE,
    CombineMode,
    LimitMode,
    Operator,
    QueryCondition,
    QueryModel,
    QueryNode,
    QueryRelationship,
)

log = logging.getLogger("graphdash.compiler")

NUMBER_RE = re.compile(r"-?(0|[1-9][0-9]*)(\.[0-9]+)?")

_STRING_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


# ── Literal / name rendering ────────────────────────────────────

def quote_name(name: str) -> str:
    """Render a label, relationship type or property key.

    Plain identifiers pass through; anything else is backtick-quoted with
    embedded backticks doubled so it cannot escape its position.
    """
    if IDENTIFIER_RE.match(name):
        return name
    return "`" + name.replace("`", "``") + "`"


def quote_string(value: str) -> str:
    return "'" + "".join(_STRING_ESCAPES.get(ch, ch) for ch in value) + "'"


def render_literal(value: str, operator: Operator) -> str:
    """String-match operators always quote; the rest try boolean/number first."""
    if operator.is_string_match:
        return quote_string(value)
    text = value.strip()
    if text.lower() in ("true", "false"):
        return text.lower()
    if NUMBER_RE.fullmatch(text):
        return text
    return quote_string(value)


# ── Pattern building ────────────────────────────────────────────

class _Branch:
    """Tracks which aliases one (sub)query has already bound."""

    def __init__(self, model: QueryModel, bound: Optional[Set[str]] = None):
        self.model = model
        self.bound: Set[str] = set(bound or ())

    def node(self, node_id: str) -> str:
        node = self.model.node(node_id)
        if node.id in self.bound or not node.label:
            self.bound.add(node.id)
            return f"({node.alias})"
        self.bound.add(node.id)
        return f"({node.alias}:{quote_name(node.label)})"

    @staticmethod
    def rel(rel: QueryRelationship) -> str:
        if rel.type:
            return f"[{rel.alias}:{quote_name(rel.type)}]"
        return f"[{rel.alias}]"


def _keyword(mode: CombineMode) -> str:
    return "OPTIONAL MATCH" if mode == CombineMode.OPTIONAL_MATCH else "MATCH"


def _split_branches(rels: List[QueryRelationship]) -> List[List[QueryRelationship]]:
    """Every OR-marked relationship after the first starts a new UNION branch."""
    branches: List[List[QueryRelationship]] = []
    for rel in rels:
        if not branches or rel.combine_mode == CombineMode.OR:
            branches.append([])
        branches[-1].append(rel)
    return branches


def _group_runs(rels: List[QueryRelationship]) -> List[Tuple[str, List[QueryRelationship]]]:
    """Consecutive AND relationships share a clause; MATCH/OPTIONAL_MATCH start one."""
    runs: List[Tuple[str, List[QueryRelationship]]] = []
    for index, rel in enumerate(rels):
        if index == 0:
            runs.append(("MATCH", [rel]))
        elif rel.combine_mode in (CombineMode.MATCH, CombineMode.OPTIONAL_MATCH):
            runs.append((_keyword(rel.combine_mode), [rel]))
        else:
            runs[-1][1].append(rel)
    return runs


def _components(rels: List[QueryRelationship]) -> List[List[QueryRelationship]]:
    """Partition relationships into connected components, keeping input order."""
    parent: Dict[str, str] = {}

    def find(x: str) -> str:
        parent.setdefault(x, x)
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    for rel in rels:
        parent[find(rel.from_id)] = find(rel.to_id)

    groups: Dict[str, List[QueryRelationship]] = {}
    for rel in rels:
        groups.setdefault(find(rel.from_id), []).append(rel)
    return list(groups.values())


def _pattern(branch: _Branch, rels: List[QueryRelationship]) -> str:
    """Chain relationships into paths; a break in the chain starts a comma path."""
    paths: List[str] = []
    tail: Optional[str] = None
    for rel in rels:
        if tail is not None and rel.from_id == tail:
            paths[-1] += f"-{branch.rel(rel)}->{branch.node(rel.to_id)}"
            tail = rel.to_id
        elif tail is not None and rel.to_id == tail:
            paths[-1] += f"<-{branch.rel(rel)}-{branch.node(rel.from_id)}"
            tail = rel.from_id
        else:
            paths.append(
                f"{branch.node(rel.from_id)}-{branch.rel(rel)}->{branch.node(rel.to_id)}"
            )
            tail = rel.to_id
    return ", ".join(paths)


def _match_clauses(branch: _Branch, rels: List[QueryRelationship]) -> List[Tuple[str, Set[str]]]:
    """MATCH / OPTIONAL MATCH clauses, each paired with the node ids it binds first."""
    clauses: List[Tuple[str, Set[str]]] = []
    for keyword, run in _group_runs(rels):
        for component in _components(run):
            before = set(branch.bound)
            text = f"{keyword} {_pattern(branch, component)}"
            clauses.append((text, branch.bound - before))
    return clauses


def _standalone_clauses(branch: _Branch, model: QueryModel, skip: Set[str]) -> List[Tuple[str, Set[str]]]:
    clauses: List[Tuple[str, Set[str]]] = []
    for node in model.nodes:
        if node.id in skip or node.id in branch.bound:
            continue
        clauses.append((f"MATCH {branch.node(node.id)}", {node.id}))
    return clauses


def _condition(model: QueryModel, cond: QueryCondition) -> str:
    node = model.node(cond.node_id)
    return (
        f"{node.alias}.{quote_name(cond.property.strip())} "
        f"{cond.operator.value} {render_literal(cond.value, cond.operator)}"
    )


def _where(model: QueryModel, conds: List[QueryCondition]) -> Optional[str]:
    if not conds:
        return None
    return "WHERE " + " AND ".join(_condition(model, c) for c in conds)


def _with_conditions(
    model: QueryModel,
    clauses: List[Tuple[str, Set[str]]],
    conds: List[QueryCondition],
) -> List[str]:
    """Attach each condition as a WHERE right after the clause that first binds its node.

    Behind a MATCH the WHERE drops rows; behind an OPTIONAL MATCH it only
    narrows what that optional pattern may bind.
    """
    out: List[str] = []
    for text, binds in clauses:
        out.append(text)
        where = _where(model, [c for c in conds if c.node_id in binds])
        if where:
            out.append(where)
    return out


def _return(branch: _Branch, projection: List[QueryNode]) -> str:
    items = [
        node.alias if node.id in branch.bound else f"null AS {node.alias}"
        for node in projection
    ]
    return "RETURN " + ", ".join(items)


# ── Entry point ─────────────────────────────────────────────────

def compile_query(model: QueryModel) -> str:
    """Compile `model` to Cypher; an empty model compiles to ``""``.

    Raises ModelValidationError for structurally invalid models.
    """
    model.check_integrity()
    if model.is_empty:
        return ""

    rels = model.enabled_relationships()
    # nodes no enabled relationship touches get their own MATCH in every branch
    linked = {r.from_id for r in rels} | {r.to_id for r in rels}
    conds = [c for c in model.enabled_conditions() if c.is_complete()]
    projection = model.effective_projection()
    branches = _split_branches(rels) or [[]]

    if model.limit.mode == LimitMode.NODES:
        parts = [_compile_nodes_limited(model, b, linked, conds, projection, len(branches) > 1)
                 for b in branches]
    else:
        parts = [_compile_rows(model, b, linked, conds, projection) for b in branches]

    text = " UNION ".join(parts)
    log.debug("Compiled query: %s", text)
    return text


def _compile_rows(model, rels, linked, conds, projection) -> str:
    branch = _Branch(model)
    bound = _match_clauses(branch, rels) + _standalone_clauses(branch, model, skip=linked)
    clauses = _with_conditions(model, bound, conds)
    clauses.append(_return(branch, projection))
    clauses.append(f"LIMIT {model.limit.count}")
    return " ".join(clauses)


def _compile_nodes_limited(model, rels, linked, conds, projection, ordered: bool) -> str:
    """Narrow the primary node to `count` distinct matches before expanding.

    `ordered` pins the narrowed set with ORDER BY so every UNION branch expands
    the same roots.
    """
    primary = projection[0]
    branch = _Branch(model)
    clauses = [f"MATCH {branch.node(primary.id)}"]
    primary_where = _where(model, [c for c in conds if c.node_id == primary.id])
    if primary_where:
        clauses.append(primary_where)
    narrow = f"WITH DISTINCT {primary.alias}"
    if ordered:
        narrow += f" ORDER BY elementId({primary.alias})"
    clauses.append(f"{narrow} LIMIT {model.limit.count}")

    bound = _match_clauses(branch, rels) + _standalone_clauses(branch, model, skip=linked)
    clauses += _with_conditions(model, bound, conds)
    clauses.append(_return(branch, projection))
    return " ".join(clauses)
