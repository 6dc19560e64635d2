"""Statement-level structure helpers for pattern-based SQL checks.

Rules never parse SQL into an AST. Instead a rendered statement is prepared
once:

- comments are split out (their bodies are kept for governance markers),
- single-quoted literal bodies are blanked,
- parenthesized sub-selects are cut into separate scopes so a clause is only
  ever matched against the statement level it belongs to,
- each scope is split into set-operation branches (UNION / INTERSECT / EXCEPT).

Every derived text keeps the length of the original statement so that a match
offset can always be mapped back to the comment-stripped SQL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property, lru_cache
from typing import Optional

import sqlglot
from sqlglot.errors import SqlglotError
from sqlglot.tokens import Token, TokenType

from query_governance.sql.comments import (
    has_unterminated_literal,
    mask_string_literals,
    split_sql_comments,
)

IDENTIFIER = r'(?:[A-Za-z_][\w$]*|"[^"]+"|`[^`]+`|\[[^\]]+\])'
QUALIFIED_IDENTIFIER = rf"{IDENTIFIER}(?:\s*\.\s*{IDENTIFIER})*"

_SUBSELECT_START = re.compile(r"\s*(?:SELECT|WITH)\b", re.IGNORECASE)
_EXISTS_BEFORE = re.compile(r"\bEXISTS\s*$", re.IGNORECASE)
_SET_OPERATION = re.compile(
    r"\b(?:UNION|INTERSECT|EXCEPT|MINUS)\b(?:\s+(?:ALL|DISTINCT)\b)?", re.IGNORECASE
)
_CLAUSE_END = re.compile(
    r"\b(?:GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|FETCH|WINDOW|QUALIFY)\b|;",
    re.IGNORECASE,
)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_SELECT = re.compile(
    r"\bSELECT\b(?:\s+(?:DISTINCT|ALL)\b)?(?:\s+TOP\s*\(?\s*\d+\s*\)?(?:\s+PERCENT\b)?)?",
    re.IGNORECASE,
)
_FROM = re.compile(r"\bFROM\b", re.IGNORECASE)
_FROM_END = re.compile(
    r"\b(?:WHERE|GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|FETCH|WINDOW|QUALIFY|"
    r"(?:NATURAL\s+)?(?:INNER|CROSS|LEFT|RIGHT|FULL)\b|JOIN)\b|;",
    re.IGNORECASE,
)
_JOIN = re.compile(
    r"\b(?:NATURAL\s+)?(?:(?:INNER|CROSS|(?:LEFT|RIGHT|FULL)(?:\s+OUTER)?)\s+)?JOIN\b",
    re.IGNORECASE,
)
_JOIN_TARGET = re.compile(rf"\s*(?:LATERAL\s+)?(?P<name>{QUALIFIED_IDENTIFIER}|\()", re.IGNORECASE)
_ON = re.compile(r"\bON\b", re.IGNORECASE)
_USING = re.compile(r"\bUSING\s*\((?P<columns>[^)]*)\)", re.IGNORECASE)
_CTE_NAME = re.compile(
    rf"(?:\bWITH\s+(?:RECURSIVE\s+)?|,)\s*(?P<name>{IDENTIFIER})\s*(?:\([^)]*\)\s*)?AS\s*"
    r"(?:(?:NOT\s+)?MATERIALIZED\s*)?\(",
    re.IGNORECASE,
)
_MARKER = re.compile(r"@(?P<tag>[A-Za-z][\w-]*)(?:[ \t]*[:=(][ \t]*(?P<args>[^@)\n]*))?")

COMPARISON_OPERATOR = r"(?:<=|>=|<>|!=|=|<|>)"
# Quoted or numeric literal operand.
LITERAL = r"(?:(?<![\w'])[NnEe]?'[^']*'|(?<![\w.$@:])-?\d+(?:\.\d+)?(?![\w.]))"


@dataclass(frozen=True)
class SqlScope:
    """One statement level: the root statement or a parenthesized sub-select.

    ``text`` spans ``[start, start + len(text))`` of the prepared statement,
    with nested sub-select bodies blanked out.
    """

    text: str
    start: int
    depth: int
    existence_check: bool = False


@dataclass(frozen=True)
class SqlBranch:
    """One set-operation branch of a scope (a single SELECT at that level)."""

    text: str
    start: int
    scope: SqlScope

    @cached_property
    def flat(self) -> str:
        """Branch text with the contents of every parenthesized group blanked."""
        return flatten_parentheses(self.text)


@dataclass(frozen=True)
class JoinClause:
    """A JOIN found in a branch, with its ON / USING condition text."""

    position: int
    target: str
    condition: str
    using_columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClauseText:
    """A clause body (e.g. a WHERE predicate list) and its branch offset."""

    position: int
    text: str


def flatten_parentheses(text: str) -> str:
    """Blank the contents of every parenthesized group, keeping the parens."""
    out = list(text)
    depth = 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
            continue
        if ch == ")":
            depth = max(0, depth - 1)
            continue
        if depth > 0 and ch != "\n":
            out[i] = " "
    return "".join(out)


def normalize_identifier(name: str) -> str:
    """Lower-case a possibly quoted, possibly qualified identifier."""
    parts = re.split(r"\s*\.\s*", name.strip())
    return ".".join(part.strip('"`[]').lower() for part in parts if part)


@lru_cache(maxsize=64)
def parameter_pattern(sigils: str) -> str:
    """Regex for a bound parameter token such as ``@tenant_id``, ``:start`` or ``$1``.

    ``::`` casts and ``@@`` system variables are not parameters, but a parameter
    may carry a cast of its own (``@tenant_id::text``).
    """
    chars = "".join(re.escape(ch) for ch in sigils)
    cast = r"(?:\s*::\s*[A-Za-z_]\w*(?:\s*\(\s*\d+(?:\s*,\s*\d+)?\s*\))?)?"
    return rf"(?<![\w{chars}])[{chars}](?:[A-Za-z_]\w*|\d+){cast}(?![\w{chars}])"


@lru_cache(maxsize=256)
def column_pattern(name: str) -> str:
    """Regex for a (optionally qualified, optionally quoted) column reference."""
    ident = re.escape(name)
    quoted = rf'(?:"{ident}"|`{ident}`|\[{ident}\]|\b{ident}\b)'
    return rf"(?<![\w$@:.])(?:{IDENTIFIER}\s*\.\s*)*{quoted}(?![\w$])"


def parse_markers(comments: tuple[str, ...]) -> dict[str, frozenset[str]]:
    """Collect governance markers from comment bodies.

    ``-- @authorized-table: payroll, hr.salaries`` yields
    ``{"authorized-table": {"payroll", "hr.salaries"}}``. A marker without
    arguments maps to an empty set.
    """
    markers: dict[str, set[str]] = {}
    for comment in comments:
        for match in _MARKER.finditer(comment):
            tag = match.group("tag").lower()
            values = markers.setdefault(tag, set())
            args = (match.group("args") or "").strip()
            for arg in re.split(r"[,\s]+", args):
                if arg:
                    values.add(normalize_identifier(arg))
    return {tag: frozenset(values) for tag, values in markers.items()}


def _paren_pairs(text: str) -> tuple[list[tuple[int, int]], bool]:
    stack: list[int] = []
    pairs: list[tuple[int, int]] = []
    balanced = True
    for i, ch in enumerate(text):
        if ch == "(":
            stack.append(i)
        elif ch == ")":
            if stack:
                pairs.append((stack.pop(), i))
            else:
                balanced = False
    if stack:
        balanced = False
    return pairs, balanced


def _build_scopes(text: str, pairs: list[tuple[int, int]]) -> tuple[SqlScope, ...]:
    subselects = sorted(
        (open_, close) for open_, close in pairs if _SUBSELECT_START.match(text, open_ + 1, close)
    )
    bounds: list[tuple[int, int, Optional[int]]] = [(0, len(text), None)]
    bounds.extend((open_ + 1, close, open_) for open_, close in subselects)

    scopes = []
    for start, end, open_ in bounds:
        chars = list(text[start:end])
        for inner_open, inner_close in subselects:
            if start <= inner_open and inner_close < end:
                for k in range(inner_open + 1, inner_close):
                    if chars[k - start] != "\n":
                        chars[k - start] = " "
        depth = sum(1 for o, c in subselects if o < start and c >= end)
        existence_check = open_ is not None and bool(_EXISTS_BEFORE.search(text, 0, open_))
        scopes.append(
            SqlScope(
                text="".join(chars),
                start=start,
                depth=depth,
                existence_check=existence_check,
            )
        )
    return tuple(scopes)


def split_branches(scope: SqlScope) -> list[SqlBranch]:
    """Split a scope at its set operators."""
    branches = []
    cursor = 0
    for match in _SET_OPERATION.finditer(scope.text):
        branches.append(
            SqlBranch(
                text=scope.text[cursor : match.start()],
                start=scope.start + cursor,
                scope=scope,
            )
        )
        cursor = match.end()
    branches.append(SqlBranch(text=scope.text[cursor:], start=scope.start + cursor, scope=scope))
    return branches


def _clause_end(flat: str, start: int) -> int:
    match = _CLAUSE_END.search(flat, start)
    return match.start() if match else len(flat)


def where_clauses(branch: SqlBranch) -> list[ClauseText]:
    """Return the WHERE predicate text of a branch (at most one per branch)."""
    clauses = []
    for match in _WHERE.finditer(branch.flat):
        end = _clause_end(branch.flat, match.end())
        clauses.append(ClauseText(position=match.start(), text=branch.text[match.end() : end]))
    return clauses


def join_clauses(branch: SqlBranch) -> list[JoinClause]:
    """Return every JOIN in the branch with its join condition."""
    matches = list(_JOIN.finditer(branch.text))
    where_positions = [clause.position for clause in where_clauses(branch)]
    joins = []
    for index, match in enumerate(matches):
        boundaries = [_clause_end(branch.flat, match.end())]
        boundaries.extend(pos for pos in where_positions if pos > match.end())
        if index + 1 < len(matches):
            boundaries.append(matches[index + 1].start())
        end = min(boundaries)
        segment = branch.text[match.end() : end]

        target_match = _JOIN_TARGET.match(segment)
        target = ""
        if target_match:
            name = target_match.group("name")
            target = "(" if name == "(" else normalize_identifier(name)

        condition = ""
        on_match = _ON.search(flatten_parentheses(segment))
        if on_match:
            condition = segment[on_match.end() :]

        using_columns: tuple[str, ...] = ()
        using_match = _USING.search(segment)
        if using_match:
            using_columns = tuple(
                normalize_identifier(col)
                for col in using_match.group("columns").split(",")
                if col.strip()
            )

        joins.append(
            JoinClause(
                position=match.start(),
                target=target,
                condition=condition,
                using_columns=using_columns,
            )
        )
    return joins


def select_items(branch: SqlBranch) -> Optional[list[str]]:
    """Return the projection items of a branch, or None when it has no SELECT.

    Parenthesized groups are blanked so ``COUNT(*)`` reads as ``COUNT( )``.
    """
    select = _SELECT.search(branch.flat)
    if select is None:
        return None
    from_match = _FROM.search(branch.flat, select.end())
    end = from_match.start() if from_match else _clause_end(branch.flat, select.end())
    projection = branch.flat[select.end() : end]
    return [item.strip() for item in projection.split(",")]


def from_targets(branch: SqlBranch) -> Optional[list[str]]:
    """Return the FROM-list targets of a branch, or None when it has no FROM.

    Derived tables are reported as ``"("``.
    """
    from_match = _FROM.search(branch.flat)
    if from_match is None:
        return None
    end_match = _FROM_END.search(branch.flat, from_match.end())
    end = end_match.start() if end_match else len(branch.flat)
    targets = []
    for item in branch.flat[from_match.end() : end].split(","):
        item = item.strip()
        if not item:
            continue
        if item.startswith("("):
            targets.append("(")
            continue
        name = re.match(rf"(?:LATERAL\s+)?(?P<name>{QUALIFIED_IDENTIFIER})", item, re.IGNORECASE)
        if name:
            targets.append(normalize_identifier(name.group("name")))
    return targets


def cte_names(scope: SqlScope) -> set[str]:
    """Return CTE names defined at this scope."""
    return {
        normalize_identifier(match.group("name")) for match in _CTE_NAME.finditer(scope.text)
    }


@dataclass(frozen=True)
class PreparedSql:
    """A rendered statement prepared once for every guardrail rule."""

    raw: str
    text: str
    masked: str
    comments: tuple[str, ...]
    scopes: tuple[SqlScope, ...]
    balanced_parentheses: bool
    unterminated_literal: bool
    nested_block_comment: bool = False

    @property
    def is_empty(self) -> bool:
        """True when nothing but whitespace and semicolons remains."""
        return not self.masked.strip(" \t\r\n;")

    @property
    def root(self) -> SqlScope:
        """The outermost statement level."""
        return self.scopes[0]

    @cached_property
    def branches(self) -> tuple[SqlBranch, ...]:
        """Every branch of every scope, outermost scope first."""
        return tuple(branch for scope in self.scopes for branch in split_branches(scope))

    @cached_property
    def root_branches(self) -> tuple[SqlBranch, ...]:
        """Branches of the outermost statement level."""
        return tuple(split_branches(self.root))

    @cached_property
    def markers(self) -> dict[str, frozenset[str]]:
        """Governance markers found in comments."""
        return parse_markers(self.comments)

    @cached_property
    def cte_names(self) -> frozenset[str]:
        """CTE names defined anywhere in the statement."""
        names: set[str] = set()
        for scope in self.scopes:
            names.update(cte_names(scope))
        return frozenset(names)

    @cached_property
    def referenced_tables(self) -> tuple[str, ...]:
        """Physical tables read via FROM or JOIN (CTE references excluded)."""
        seen: dict[str, None] = {}
        for branch in self.branches:
            candidates = list(from_targets(branch) or [])
            candidates.extend(join.target for join in join_clauses(branch))
            for name in candidates:
                if not name or name == "(":
                    continue
                if name in self.cte_names:
                    continue
                seen.setdefault(name, None)
        return tuple(seen)

    def original(self, start: int, end: int) -> str:
        """Return comment-stripped SQL (literals intact) for a masked span."""
        return self.text[start:end]

    def tokenize(self, dialect: Optional[str] = None) -> list[Token]:
        """Tokenize the comment-stripped statement with sqlglot.

        Raises ``SqlglotError`` when the statement is not lexically valid.
        """
        return sqlglot.tokenize(self.text, read=dialect)

    def statement_count(self, dialect: Optional[str] = None) -> int:
        """Count non-empty statements separated by semicolons."""
        try:
            tokens = self.tokenize(dialect)
        except SqlglotError:
            return sum(1 for part in self.masked.split(";") if part.strip())

        count = 0
        pending = False
        for token in tokens:
            if token.token_type == TokenType.SEMICOLON:
                count += int(pending)
                pending = False
            else:
                pending = True
        return count + int(pending)


def prepare_sql(sql: str) -> PreparedSql:
    """Prepare rendered SQL for pattern-based rule evaluation."""
    split = split_sql_comments(sql if isinstance(sql, str) else "")
    masked = mask_string_literals(split.text)
    pairs, balanced = _paren_pairs(masked)
    return PreparedSql(
        raw=sql if isinstance(sql, str) else "",
        text=split.text,
        masked=masked,
        comments=split.comments,
        scopes=_build_scopes(masked, pairs),
        balanced_parentheses=balanced,
        unterminated_literal=has_unterminated_literal(split.text),
        nested_block_comment=split.nested_block_comment,
    )
