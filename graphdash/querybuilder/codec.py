"""Compact shareable token for a QueryModel.

The token is URL-safe base64 of compact JSON::

    {n:[{l,a}], r:[{t,f,to,a,m,e}], c:[{n,p,o,v,e}], f:[...], l, lm}

Relationships, conditions and the projection reference nodes by their position
in `n`; internal ids are never persisted and are regenerated on decode.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from graphdash.querybuilder.models import (
    IDENTIFIER_RE,
    RESERVED_WORDS,
    CombineMode,
    LimitMode,
    Operator,
    QueryModel,
)

log = logging.getLogger("graphdash.codec")


class InvalidToken(ValueError):
    """The token is not decodable data; the caller keeps its current model."""


# ── Payload shapes ──────────────────────────────────────────────

class _NodeEntry(BaseModel):
    l: Optional[str] = None
    a: Optional[str] = None


class _RelEntry(BaseModel):
    t: Optional[str] = None
    f: Optional[int] = None
    to: Optional[int] = None
    a: Optional[str] = None
    m: Optional[str] = None
    e: bool = True


class _CondEntry(BaseModel):
    n: Optional[int] = None
    p: str = ""
    o: str = "="
    v: str = ""
    e: bool = True

    @field_validator("v", mode="before")
    @classmethod
    def _value_as_text(cls, v):
        if v is None:
            return ""
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)


class _Payload(BaseModel):
    n: List[_NodeEntry] = Field(default_factory=list)
    r: List[Dict[str, Any]] = Field(default_factory=list)
    c: List[Dict[str, Any]] = Field(default_factory=list)
    f: List[Union[int, str]] = Field(default_factory=list)
    l: Optional[Union[int, str]] = None
    lm: Optional[str] = None


def _compact(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if v is not None}


# ── Encode ──────────────────────────────────────────────────────

def encode(model: QueryModel) -> str:
    model.check_integrity()
    index = {node.id: i for i, node in enumerate(model.nodes)}
    payload = {
        "n": [_compact({"l": n.label, "a": n.alias}) for n in model.nodes],
        "r": [
            _compact({
                "t": r.type,
                "f": index[r.from_id],
                "to": index[r.to_id],
                "a": r.alias,
                "m": r.combine_mode.value,
                "e": r.enabled,
            })
            for r in model.relationships
        ],
        "c": [
            {
                "n": index[c.node_id],
                "p": c.property,
                "o": c.operator.value,
                "v": c.value,
                "e": c.enabled,
            }
            for c in model.conditions
        ],
        "f": [index[node_id] for node_id in model.projection],
        "l": model.limit.count,
        "lm": model.limit.mode.value,
    }
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


# ── Decode ──────────────────────────────────────────────────────

def _load_payload(token: str) -> _Payload:
    text = (token or "").strip()
    if not text:
        raise InvalidToken("Token is empty")
    text = text.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(text, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidToken(f"Token is not valid encoded data: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidToken("Token does not hold a query builder state")
    try:
        return _Payload.model_validate(data)
    except ValidationError as exc:
        raise InvalidToken(f"Token has an invalid structure: {exc.error_count()} error(s)") from exc


def _usable_alias(alias: Optional[str], taken: set[str]) -> bool:
    return (
        bool(alias)
        and IDENTIFIER_RE.match(alias) is not None
        and alias.upper() not in RESERVED_WORDS
        and alias not in taken
    )


def _assign_aliases(wanted: List[Optional[str]], prefix: str, taken: set[str]) -> List[str]:
    """Keep each usable alias, auto-assign the rest without clashing."""
    kept: List[Optional[str]] = []
    for alias in wanted:
        if _usable_alias(alias, taken):
            taken.add(alias)
            kept.append(alias)
        else:
            kept.append(None)
    result: List[str] = []
    index = 1
    for alias in kept:
        if alias is None:
            while f"{prefix}{index}" in taken:
                index += 1
            alias = f"{prefix}{index}"
            taken.add(alias)
        result.append(alias)
    return result


def _in_range(position: Optional[int], size: int) -> bool:
    return position is not None and 0 <= position < size


def decode(token: str) -> QueryModel:
    """Rebuild a QueryModel with fresh ids.

    Raises InvalidToken when the token is not decodable. Entries that point at
    a node position outside `n` are dropped individually.
    """
    payload = _load_payload(token)
    model = QueryModel()

    taken: set[str] = set()
    node_aliases = _assign_aliases([n.a for n in payload.n], "n", taken)
    ids: List[str] = []
    for entry, alias in zip(payload.n, node_aliases):
        ids.append(model.add_node(label=entry.l, alias=alias).id)

    rels: List[_RelEntry] = []
    for raw in payload.r:
        try:
            entry = _RelEntry.model_validate(raw)
        except ValidationError:
            log.warning("Dropping malformed relationship entry from token: %r", raw)
            continue
        if not (_in_range(entry.f, len(ids)) and _in_range(entry.to, len(ids))):
            log.warning("Dropping relationship with out-of-range endpoints (%s -> %s)", entry.f, entry.to)
            continue
        rels.append(entry)

    rel_aliases = _assign_aliases([r.a for r in rels], "r", taken)
    for entry, alias in zip(rels, rel_aliases):
        try:
            mode: Optional[CombineMode] = CombineMode(entry.m) if entry.m else None
        except ValueError:
            mode = None
        model.add_relationship(
            ids[entry.f],
            ids[entry.to],
            type=entry.t,
            alias=alias,
            combine_mode=mode,
            enabled=entry.e,
        )

    for raw in payload.c:
        try:
            entry = _CondEntry.model_validate(raw)
            operator = Operator.parse(entry.o)
        except (ValidationError, ValueError):
            log.warning("Dropping malformed condition entry from token: %r", raw)
            continue
        if not _in_range(entry.n, len(ids)):
            log.warning("Dropping condition on out-of-range node %s", entry.n)
            continue
        model.add_condition(ids[entry.n], property=entry.p, operator=operator, value=entry.v, enabled=entry.e)

    projection: List[str] = []
    for ref in payload.f:
        if isinstance(ref, int):
            node_id = ids[ref] if _in_range(ref, len(ids)) else None
        else:
            node = model.node_by_alias(ref)
            node_id = node.id if node else None
        if node_id is None:
            log.warning("Dropping projection entry %r", ref)
        elif node_id not in projection:
            projection.append(node_id)
    model.set_projection(projection)

    try:
        mode_value = LimitMode((payload.lm or LimitMode.ROWS.value).strip().lower())
    except ValueError:
        mode_value = LimitMode.ROWS
    model.set_limit(count=payload.l, mode=mode_value)
    return model
