"""Best-effort recovery of a QueryModel from Cypher text.

Only the subset the compiler itself produces is recognized: MATCH /
OPTIONAL MATCH clauses of chained directed patterns, one WHERE of AND-joined
`alias.property OP literal` comparisons, a RETURN of bare node aliases and an
optional LIMIT. Anything else raises NotRepresentable and no model is built.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from graphdash.querybuilder.models import (
    CombineMode,
    LimitMode,
    ModelValidationError,
    Operator,
    QueryModel,
)

log = logging.getLogger("graphdash.decompiler")


class NotRepresentable(ValueError):
    """The text is valid-looking Cypher the builder cannot represent."""

    def __init__(self, reason: str):
        super().__init__(f"Could not represent this query in the builder: {reason}")
        self.reason = reason


# ── Tokenizer ───────────────────────────────────────────────────

@dataclass
class Token:
    kind: str       # name | quoted | string | number | punct | eof
    text: str
    value: str
    pos: int

    def is_word(self, *words: str) -> bool:
        return self.kind == "name" and self.text.upper() in words


_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+|//[^\n]*)
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<quoted>`(?:[^`]|``)*`)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<number>[0-9]+(?:\.[0-9]+)?)
  | (?P<punct><>|<=|>=|!=|[()\[\]{}:,.\-<>=;*|+/%!])
    """,
    re.VERBOSE | re.DOTALL,
)

_UNESCAPES = {"\\": "\\", "'": "'", '"': '"', "n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f"}


def _unescape(body: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            if nxt == "u" and re.fullmatch(r"[0-9A-Fa-f]{4}", body[i + 2:i + 6]):
                out.append(chr(int(body[i + 2:i + 6], 16)))
                i += 6
                continue
            out.append(_UNESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise NotRepresentable(f"unexpected character {text[pos]!r} at offset {pos}")
        kind = m.lastgroup
        raw = m.group()
        if kind == "quoted":
            tokens.append(Token(kind, raw, raw[1:-1].replace("``", "`"), pos))
        elif kind == "string":
            tokens.append(Token(kind, raw, _unescape(raw[1:-1]), pos))
        elif kind != "space":
            tokens.append(Token(kind, raw, raw, pos))
        pos = m.end()
    tokens.append(Token("eof", "", "", pos))
    return tokens


# ── Intermediate form ───────────────────────────────────────────

@dataclass
class _PNode:
    alias: Optional[str]
    label: Optional[str] = None


@dataclass
class _PRel:
    alias: Optional[str]
    type: Optional[str]
    source: int
    target: int
    mode: CombineMode


@dataclass
class _PCond:
    alias: str
    property: str
    operator: Operator
    value: str


@dataclass
class _Parsed:
    nodes: List[_PNode] = field(default_factory=list)
    rels: List[_PRel] = field(default_factory=list)
    conds: List[_PCond] = field(default_factory=list)
    returns: List[str] = field(default_factory=list)
    limit: Optional[int] = None


_UNSUPPORTED = (
    "WITH", "UNWIND", "CALL", "UNION", "CREATE", "MERGE", "DELETE", "DETACH",
    "SET", "REMOVE", "FOREACH", "ORDER", "SKIP", "LOAD", "USE", "YIELD",
)


class _Parser:
    def __init__(self, text: str):
        self.tokens = tokenize(text)
        self.i = 0
        self.out = _Parsed()
        self.node_aliases: Dict[str, int] = {}
        self.rel_aliases: set[str] = set()
        # clause kind that first bound each node alias
        self.node_modes: Dict[str, CombineMode] = {}
        self.keyword = CombineMode.MATCH

    # token helpers

    @property
    def tok(self) -> Token:
        return self.tokens[self.i]

    def peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.i + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        tok = self.tok
        self.i += 1
        return tok

    def fail(self, what: str) -> NotRepresentable:
        tok = self.tok
        found = tok.text or "end of query"
        return NotRepresentable(f"{what} (found {found!r} at offset {tok.pos})")

    def expect_punct(self, text: str) -> None:
        if self.tok.kind != "punct" or self.tok.text != text:
            raise self.fail(f"expected {text!r}")
        self.advance()

    def at_punct(self, text: str) -> bool:
        return self.tok.kind == "punct" and self.tok.text == text

    def name(self, what: str) -> str:
        if self.tok.kind in ("name", "quoted"):
            return self.advance().value
        raise self.fail(f"expected {what}")

    # grammar

    def parse(self) -> _Parsed:
        clause_index = 0
        where_allowed = False
        introduced: set[str] = set()
        while True:
            if self.tok.is_word("MATCH"):
                self.advance()
                introduced = self.match_clause(CombineMode.MATCH, clause_index)
                clause_index += 1
                where_allowed = True
            elif self.tok.is_word("OPTIONAL") and self.peek().is_word("MATCH"):
                self.advance()
                self.advance()
                introduced = self.match_clause(CombineMode.OPTIONAL_MATCH, clause_index)
                clause_index += 1
                where_allowed = True
            elif self.tok.is_word("WHERE"):
                if not where_allowed:
                    raise self.fail("WHERE must directly follow a MATCH clause")
                where_allowed = False
                self.advance()
                self.where_clause(introduced)
            else:
                break

        if clause_index == 0:
            raise self.fail("expected MATCH")
        if not self.tok.is_word("RETURN"):
            if self.tok.kind == "name" and self.tok.text.upper() in _UNSUPPORTED:
                raise self.fail(f"{self.tok.text.upper()} is not supported")
            raise self.fail("expected RETURN")
        self.advance()
        self.return_clause()

        if self.tok.is_word("LIMIT"):
            self.advance()
            if self.tok.kind != "number" or "." in self.tok.text:
                raise self.fail("expected an integer LIMIT")
            limit = int(self.advance().text)
            if limit < 1:
                raise NotRepresentable(f"LIMIT {limit} returns no rows")
            self.out.limit = limit
        if self.at_punct(";"):
            self.advance()
        if self.tok.kind != "eof":
            if self.tok.kind == "name" and self.tok.text.upper() in _UNSUPPORTED:
                raise self.fail(f"{self.tok.text.upper()} is not supported")
            raise self.fail("unexpected trailing input")
        return self.out

    def match_clause(self, keyword: CombineMode, clause_index: int) -> set[str]:
        """Parse one clause body; returns the node aliases it binds first."""
        self.keyword = keyword
        known = set(self.node_aliases)
        first_rel = len(self.out.rels)
        self.path(keyword, first_rel)
        while self.at_punct(","):
            self.advance()
            self.path(keyword, first_rel)
        if keyword == CombineMode.OPTIONAL_MATCH and len(self.out.rels) == first_rel:
            raise NotRepresentable("OPTIONAL MATCH of a lone node is not supported")
        return set(self.node_aliases) - known

    def path(self, keyword: CombineMode, first_rel: int) -> None:
        nxt = self.peek()
        if self.tok.kind == "name" and nxt.kind == "punct" and nxt.text == "=":
            raise self.fail("named paths are not supported")
        current = self.node()
        while self.at_punct("-") or self.at_punct("<"):
            backward = self.at_punct("<")
            if backward:
                self.advance()
            self.expect_punct("-")
            alias, rel_type = self.rel_body()
            self.expect_punct("-")
            forward = self.at_punct(">")
            if forward:
                self.advance()
            if forward == backward:
                raise self.fail("only directed relationships are supported")
            other = self.node()
            source, target = (current, other) if forward else (other, current)
            mode = keyword if len(self.out.rels) == first_rel else CombineMode.AND
            self.out.rels.append(_PRel(alias, rel_type, source, target, mode))
            current = other

    def node(self) -> int:
        self.expect_punct("(")
        alias = None
        label = None
        if self.tok.kind in ("name", "quoted"):
            alias = self.advance().value
        if self.at_punct(":"):
            self.advance()
            label = self.name("a label")
            if self.at_punct(":"):
                raise self.fail("multiple labels are not supported")
        if not self.at_punct(")"):
            raise self.fail("only a label may appear inside a node pattern")
        self.advance()

        if alias is None:
            self.out.nodes.append(_PNode(None, label))
            return len(self.out.nodes) - 1
        if alias in self.rel_aliases:
            raise NotRepresentable(f"alias {alias!r} is used for a node and a relationship")
        index = self.node_aliases.get(alias)
        if index is None:
            self.out.nodes.append(_PNode(alias, label))
            index = self.node_aliases[alias] = len(self.out.nodes) - 1
            self.node_modes[alias] = self.keyword
        elif label is not None:
            known = self.out.nodes[index]
            if known.label is not None and known.label != label:
                raise NotRepresentable(f"node {alias!r} carries more than one label")
            known.label = label
        return index

    def rel_body(self) -> Tuple[Optional[str], Optional[str]]:
        self.expect_punct("[")
        alias = None
        rel_type = None
        if self.tok.kind in ("name", "quoted"):
            alias = self.advance().value
            if alias in self.rel_aliases or alias in self.node_aliases:
                raise NotRepresentable(f"alias {alias!r} is bound more than once")
            self.rel_aliases.add(alias)
        if self.at_punct(":"):
            self.advance()
            rel_type = self.name("a relationship type")
        if not self.at_punct("]"):
            raise self.fail("only a type may appear inside a relationship pattern")
        self.advance()
        return alias, rel_type

    def where_clause(self, introduced: set[str]) -> None:
        self.condition(introduced)
        while self.tok.is_word("AND"):
            self.advance()
            self.condition(introduced)
        if self.tok.is_word("OR", "XOR", "NOT"):
            raise self.fail("only AND-joined comparisons are supported")

    def condition(self, introduced: set[str]) -> None:
        if self.tok.kind != "name":
            raise self.fail("expected alias.property")
        alias = self.advance().text
        if alias not in self.node_aliases:
            raise NotRepresentable(f"condition on unknown node alias {alias!r}")
        # a condition sits behind the clause that first binds its node
        if self.keyword == CombineMode.OPTIONAL_MATCH and alias not in introduced:
            raise NotRepresentable(
                f"WHERE after OPTIONAL MATCH tests {alias!r}, which that clause does not introduce"
            )
        if self.keyword == CombineMode.MATCH and self.node_modes[alias] == CombineMode.OPTIONAL_MATCH:
            raise NotRepresentable(f"WHERE after MATCH tests optional node {alias!r}")
        self.expect_punct(".")
        prop = self.name("a property key")
        operator = self.operator()
        value = self.literal()
        self.out.conds.append(_PCond(alias, prop, operator, value))

    def operator(self) -> Operator:
        tok = self.tok
        if tok.kind == "punct" and tok.text in ("=", "<>", "!=", "<", ">", "<=", ">="):
            self.advance()
            return Operator.parse(tok.text)
        if tok.is_word("CONTAINS"):
            self.advance()
            return Operator.CONTAINS
        if tok.is_word("STARTS", "ENDS") and self.peek().is_word("WITH"):
            self.advance()
            self.advance()
            return Operator.parse(f"{tok.text} WITH")
        raise self.fail("expected a comparison operator")

    def literal(self) -> str:
        tok = self.tok
        if tok.kind == "string":
            self.advance()
            return tok.value
        if tok.is_word("TRUE", "FALSE"):
            self.advance()
            return tok.text.lower()
        negative = False
        if self.at_punct("-"):
            negative = True
            self.advance()
        if self.tok.kind == "number":
            text = self.advance().text
            return f"-{text}" if negative else text
        raise self.fail("expected a string, number or boolean literal")

    def return_clause(self) -> None:
        if self.tok.is_word("DISTINCT") or self.at_punct("*"):
            raise self.fail("RETURN must list node aliases")
        self.return_item()
        while self.at_punct(","):
            self.advance()
            self.return_item()

    def return_item(self) -> None:
        if self.tok.kind not in ("name", "quoted"):
            raise self.fail("expected a node alias")
        alias = self.advance().value
        if self.at_punct("(") or self.at_punct(".") or self.tok.is_word("AS"):
            raise NotRepresentable("RETURN items must be bare node aliases")
        if alias not in self.node_aliases:
            raise NotRepresentable(f"RETURN of {alias!r} which is not a matched node")
        if alias in self.out.returns:
            raise NotRepresentable(f"{alias!r} is returned twice")
        self.out.returns.append(alias)


# ── Model assembly ──────────────────────────────────────────────

def _build(parsed: _Parsed) -> QueryModel:
    model = QueryModel()
    explicit = {n.alias for n in parsed.nodes if n.alias} | {r.alias for r in parsed.rels if r.alias}

    def fresh(prefix: str, taken: set[str]) -> str:
        index = 1
        while f"{prefix}{index}" in taken:
            index += 1
        taken.add(f"{prefix}{index}")
        return f"{prefix}{index}"

    taken = set(explicit)
    ids: List[str] = []
    for pnode in parsed.nodes:
        node = model.add_node(label=pnode.label, alias=pnode.alias or fresh("n", taken))
        ids.append(node.id)
    for prel in parsed.rels:
        model.add_relationship(
            ids[prel.source],
            ids[prel.target],
            type=prel.type,
            alias=prel.alias or fresh("r", taken),
            combine_mode=prel.mode,
        )
    for pcond in parsed.conds:
        node = model.node_by_alias(pcond.alias)
        model.add_condition(node.id, property=pcond.property, operator=pcond.operator, value=pcond.value)
    model.set_projection([model.node_by_alias(alias).id for alias in parsed.returns])
    if parsed.limit is not None:
        model.set_limit(count=parsed.limit, mode=LimitMode.ROWS)
    return model


def decompile(text: str) -> QueryModel:
    """Recover a QueryModel from `text` or raise NotRepresentable."""
    if not text or not text.strip():
        raise NotRepresentable("query is empty")
    try:
        parsed = _Parser(text).parse()
        model = _build(parsed)
    except NotRepresentable as exc:
        log.debug("Decompile rejected: %s", exc.reason)
        raise
    except ModelValidationError as exc:
        log.debug("Decompile produced an invalid model: %s", exc)
        raise NotRepresentable(str(exc)) from exc
    except ValueError as exc:
        raise NotRepresentable(str(exc)) from exc
    return model
