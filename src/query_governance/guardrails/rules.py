"""Guardrail rule predicates and the ordered rule table.

Every predicate is a pure function of the prepared SQL and the rule context.
Patterns run against comment-stripped text with single-quoted literal bodies
blanked; comment bodies are consulted only for governance markers.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterator

from sqlglot.errors import SqlglotError

from query_governance.guardrails.base import GuardrailRule, RuleContext, RuleOutcome
from query_governance.models import RuleCategory, Severity
from query_governance.sql.structure import (
    COMPARISON_OPERATOR,
    IDENTIFIER,
    LITERAL,
    ClauseText,
    PreparedSql,
    SqlBranch,
    column_pattern,
    flatten_parentheses,
    from_targets,
    join_clauses,
    select_items,
    where_clauses,
)

_MAX_DETAIL_LEN = 200

_READ_ONLY_START = re.compile(r"\s*\(*\s*(?:SELECT|WITH)\b", re.IGNORECASE)
_WRITE_KEYWORDS = re.compile(
    r"\b(?:INSERT|UPDATE|DELETE|MERGE|UPSERT|DROP|ALTER|CREATE|TRUNCATE|GRANT|REVOKE|"
    r"CALL|COPY|VACUUM|ATTACH|DETACH|INTO)\b"
    r"|\bFOR\s+(?:NO\s+KEY\s+)?(?:UPDATE|SHARE|KEY\s+SHARE)\b",
    re.IGNORECASE,
)
_WILDCARD_ITEM = re.compile(rf"(?:{IDENTIFIER}\s*\.\s*)*\*")
_GROUP_BY = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)
_AGGREGATE_CALL = re.compile(
    r"\b(?:COUNT|SUM|AVG|MIN|MAX|ARRAY_AGG|STRING_AGG|LISTAGG|APPROX_COUNT_DISTINCT)\s*\(",
    re.IGNORECASE,
)
_DYNAMIC_EXECUTION = re.compile(
    r"\bEXEC(?:UTE)?\b|\bsp_executesql\b|\bPREPARE\s+\w+\s+FROM\b", re.IGNORECASE
)
_TEMPLATE_PLACEHOLDER = re.compile(r"\$\{[^}]*\}|\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)
_BARE_IDENTIFIER = re.compile(r"(?<![\w$@:])[A-Za-z_]\w*")
_BOOLEAN_WORD = re.compile(r"\b(?:BETWEEN|AND|OR)\b", re.IGNORECASE)


@lru_cache(maxsize=256)
def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def _truncate(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= _MAX_DETAIL_LEN else text[: _MAX_DETAIL_LEN - 3] + "..."


def _where_texts(sql: PreparedSql) -> Iterator[ClauseText]:
    for branch in sql.branches:
        yield from where_clauses(branch)


def _table_reading_branches(sql: PreparedSql) -> Iterator[tuple[SqlBranch, list[str]]]:
    """Yield each branch whose FROM list names a physical table, with those tables."""
    for branch in sql.branches:
        tables = [
            target
            for target in from_targets(branch) or []
            if target != "(" and target not in sql.cte_names
        ]
        if tables:
            yield branch, tables


def _encloses(text: str) -> bool:
    """True when the leading parenthesis closes at the last character."""
    depth = 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i == len(text) - 1
    return False


def _split_top_level(text: str, keyword: str) -> list[str]:
    """Split a predicate at depth-0 AND or OR; BETWEEN x AND y stays whole."""
    parts = []
    cursor = 0
    in_between = False
    for match in _BOOLEAN_WORD.finditer(flatten_parentheses(text)):
        word = match.group(0).upper()
        if word == "BETWEEN":
            in_between = True
        elif word == "AND" and in_between:
            in_between = False
        elif word == keyword:
            parts.append(text[cursor : match.start()])
            cursor = match.end()
    parts.append(text[cursor:])
    return parts


def _binds_every_row(predicate: str, bound: re.Pattern) -> bool:
    """True when no row can satisfy ``predicate`` without also satisfying ``bound``."""
    text = predicate.strip()
    while text.startswith("(") and _encloses(text):
        text = text[1:-1].strip()
    disjuncts = _split_top_level(text, "OR")
    if len(disjuncts) > 1:
        return all(_binds_every_row(part, bound) for part in disjuncts)
    conjuncts = _split_top_level(text, "AND")
    if len(conjuncts) > 1:
        return any(_binds_every_row(part, bound) for part in conjuncts)
    return bound.fullmatch(text) is not None


def _filters_on(column: str) -> re.Pattern:
    col = column_pattern(column)
    return _rx(
        rf"{col}\s*(?:{COMPARISON_OPERATOR}|\bNOT\s+IN\b|\bIN\b|\bBETWEEN\b)"
        rf"|{COMPARISON_OPERATOR}\s*{col}"
    )


# ---------------------------------------------------------------------------
# Structural
# ---------------------------------------------------------------------------


def check_non_empty_statement(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """The statement must contain something besides comments and semicolons."""
    if sql.is_empty:
        return RuleOutcome(False, "Statement is empty after removing comments.")
    return RuleOutcome(True, "Statement is not empty.")


def check_lexically_well_formed(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Quotes and parentheses must balance and the tokenizer must accept the text."""
    problems = []
    if sql.unterminated_literal:
        problems.append("unterminated quoted literal or identifier")
    if not sql.balanced_parentheses:
        problems.append("unbalanced parentheses")
    if sql.nested_block_comment:
        problems.append("block comment opened inside a block comment")
    try:
        sql.tokenize(context.config.sql_dialect)
    except SqlglotError as exc:
        problems.append(f"tokenizer error: {_truncate(str(exc))}")

    if problems:
        return RuleOutcome(False, "Statement is malformed: " + "; ".join(problems) + ".")
    return RuleOutcome(True, "Statement is lexically well formed.")


def check_single_statement(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Statement chaining is never forwarded to the warehouse."""
    count = sql.statement_count(context.config.sql_dialect)
    if count > 1:
        return RuleOutcome(
            False, f"Found {count} statements; statement chaining is not allowed."
        )
    return RuleOutcome(True, "Exactly one statement.")


def check_read_only_statement(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Only SELECT / WITH statements without write or locking clauses."""
    if not _READ_ONLY_START.match(sql.masked):
        return RuleOutcome(False, "Statement must start with SELECT or WITH.")
    match = _WRITE_KEYWORDS.search(sql.masked)
    if match:
        keyword = " ".join(match.group(0).upper().split())
        return RuleOutcome(
            False, f"Statement contains '{keyword}'; only read-only queries are allowed."
        )
    return RuleOutcome(True, "Statement is read-only.")


def check_select_list_present(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Every top-level SELECT must project at least one expression."""
    for branch in sql.root_branches:
        items = select_items(branch)
        if items is None:
            return RuleOutcome(False, "Statement has no SELECT clause.")
        if not items or any(not item for item in items):
            return RuleOutcome(False, "SELECT column list is empty or has an empty item.")
    return RuleOutcome(True, "SELECT column list is present.")


def check_from_clause_present(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Every top-level SELECT must read FROM a table or derived table."""
    for branch in sql.root_branches:
        targets = from_targets(branch)
        if targets is None:
            return RuleOutcome(False, "Statement has no FROM clause.")
        if not targets:
            return RuleOutcome(False, "FROM clause does not name a table.")
    return RuleOutcome(True, "FROM clause names a table.")


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


def check_tenant_filter_present(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """The tenant column must be bound to a parameter in a WHERE clause, never a literal."""
    column = context.config.tenant_column
    col = column_pattern(column)
    param = context.parameter

    literal = _rx(
        rf"{col}\s*(?:{COMPARISON_OPERATOR}|\bIN\s*\()\s*{LITERAL}"
        rf"|{LITERAL}\s*{COMPARISON_OPERATOR}\s*{col}"
    ).search(sql.masked)
    if literal:
        predicate = _truncate(sql.original(literal.start(), literal.end()))
        message = (
            f"Tenant filter must be bound parameter, not literal: `{predicate}` "
            "hardcodes a tenant value."
        )
        values = re.findall(r"'((?:[^']|'')*)'", predicate)
        if values and all(value != context.tenant_id for value in values):
            message += " The literal does not match the authenticated tenant."
        return RuleOutcome(False, message)

    bound = _rx(rf"{col}\s*=\s*{param}|{param}\s*=\s*{col}")
    unscoped: list[str] = []
    checked = 0
    for branch, tables in _table_reading_branches(sql):
        checked += 1
        if not any(_binds_every_row(clause.text, bound) for clause in where_clauses(branch)):
            unscoped.extend(table for table in tables if table not in unscoped)

    if unscoped or not checked:
        message = f"No WHERE clause binds tenant column '{column}' to a query parameter"
        if unscoped:
            message += (
                f" for {', '.join(repr(t) for t in unscoped)}; the filter must hold for every "
                "row, as a top-level AND condition at the same statement level as the table"
            )
        return RuleOutcome(False, message + ".")
    return RuleOutcome(True, f"Tenant column '{column}' is bound to a query parameter.")


def check_no_unscoped_joins(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Each JOIN must be tenant-scoped at its own statement level."""
    column = context.config.tenant_column
    in_condition = _rx(column_pattern(column))
    filters = _filters_on(column)

    unscoped = []
    join_count = 0
    for branch in sql.branches:
        joins = join_clauses(branch)
        if not joins:
            continue
        wheres = where_clauses(branch)
        for join in joins:
            join_count += 1
            if column in join.using_columns or in_condition.search(join.condition):
                continue
            if any(w.position > join.position and filters.search(w.text) for w in wheres):
                continue
            unscoped.append(join.target if join.target not in ("", "(") else "<derived table>")

    if unscoped:
        return RuleOutcome(
            False,
            f"JOIN on {', '.join(repr(t) for t in unscoped)} has no tenant filter on "
            f"'{column}' in its join condition or a later WHERE clause at the same "
            "statement level (cross-tenant leak risk).",
        )
    if not join_count:
        return RuleOutcome(True, "Query has no joins.")
    return RuleOutcome(True, f"All {join_count} join(s) are tenant-scoped.")


def check_no_wildcard_projection(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Explicit column lists only; EXISTS sub-selects are exempt."""
    offenders = []
    for branch in sql.branches:
        if branch.scope.existence_check:
            continue
        for item in select_items(branch) or []:
            if _WILDCARD_ITEM.match(item):
                where = "sub-select" if branch.scope.depth else "top-level SELECT"
                offenders.append(f"`{item.split()[0]}` in {where}")
    if offenders:
        return RuleOutcome(
            False,
            "No wildcard projection: SELECT * is not allowed; list columns explicitly "
            f"({', '.join(offenders)}).",
        )
    return RuleOutcome(True, "Projection lists explicit columns.")


def check_no_dynamic_sql(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """No string-built SQL or dynamic execution."""
    param = context.parameter
    patterns = (
        ("string concatenation with a parameter", rf"{param}\s*\|\||\|\|\s*{param}"),
        ("string concatenation with a parameter", rf"'[^']*'\s*\+\s*{param}|{param}\s*\+\s*'"),
        ("CONCAT() over a parameter", rf"\bCONCAT(?:_WS)?\s*\([^)]*{param}"),
    )
    found = []
    for label, pattern in patterns:
        if _rx(pattern).search(sql.masked) and label not in found:
            found.append(label)
    if _DYNAMIC_EXECUTION.search(sql.masked):
        found.append("dynamic execution construct")
    if _TEMPLATE_PLACEHOLDER.search(sql.text):
        found.append("unrendered template placeholder")

    if found:
        return RuleOutcome(
            False,
            f"Dynamic SQL detected ({', '.join(found)}); parameters must be bound, "
            "not spliced into SQL text.",
        )
    return RuleOutcome(True, "No dynamic SQL constructs.")


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------


def check_date_bound_present(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """A declared temporal filter must restrict the temporal column via parameters."""
    column = context.config.temporal_column
    escalated = Severity.BLOCKING if context.config.is_large_table(context.template_id) else None
    contract = context.contract
    if contract is None or column not in contract.required_filters:
        return RuleOutcome(
            True, f"Template does not declare a temporal filter on '{column}'.", escalated
        )

    col = column_pattern(column)
    param = context.parameter
    operand = rf"(?:[A-Za-z_]\w*\s*\(\s*)?{param}"
    lower_bound = rf"(?:(?!\bAND\b)[^;])*?{param}(?:(?!\bAND\b)[^;])*?"
    bound = _rx(
        rf"{col}\s+BETWEEN\s+{lower_bound}\bAND\s+{operand}"
        rf"|{col}\s*(?:<=|>=|=|<|>)\s*{operand}"
        rf"|{param}\s*\)?\s*(?:<=|>=|=|<|>)\s*{col}"
    )
    if any(bound.search(clause.text) for clause in _where_texts(sql)):
        return RuleOutcome(True, f"Temporal column '{column}' is bounded by parameters.", escalated)

    message = (
        f"No WHERE clause bounds temporal column '{column}' with bound parameters "
        "(BETWEEN, >=/<= or =)."
    )
    if escalated:
        message += " Template is flagged as large-table, so this blocks execution."
    return RuleOutcome(False, message, escalated)


def _partition_candidates(sql: PreparedSql, context: RuleContext) -> tuple[str, ...]:
    if context.contract is not None and context.contract.partition_columns:
        return context.contract.partition_columns
    seen: dict[str, None] = {}
    for match in _BARE_IDENTIFIER.finditer(sql.masked):
        name = match.group(0).lower()
        if context.config.is_partition_column(name):
            seen.setdefault(name, None)
    return tuple(seen)


def check_partition_pruning_present(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """At least one partition column must appear in a filtering position."""
    candidates = _partition_candidates(sql, context)
    if not candidates:
        return RuleOutcome(
            False,
            "No partition column is declared or referenced; full-partition scans are not "
            "allowed.",
        )

    filter_texts = [clause.text for clause in _where_texts(sql)]
    for branch in sql.branches:
        filter_texts.extend(join.condition for join in join_clauses(branch))

    for name in candidates:
        filters = _filters_on(name)
        if any(filters.search(text) for text in filter_texts):
            return RuleOutcome(True, f"Partition column '{name}' is filtered.")
    return RuleOutcome(
        False,
        f"No partition column ({', '.join(candidates)}) is filtered; full-partition scans "
        "are not allowed.",
    )


def check_no_unbounded_result_set(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Joined, non-aggregated results must carry a row limit or a documented exemption."""
    if not any(join_clauses(branch) for branch in sql.branches):
        return RuleOutcome(True, "Query does not join tables.")

    root = sql.root.text
    if _GROUP_BY.search(root) or _AGGREGATE_CALL.search(root):
        return RuleOutcome(True, "Joined result is aggregated.")

    limit = _rx(
        rf"\bLIMIT\s+(?:\d+|{context.parameter})|\bFETCH\s+(?:FIRST|NEXT)\b|\bTOP\s*\(?\s*\d+"
    )
    if limit.search(root):
        return RuleOutcome(True, "Joined result has a row limit.")
    if context.config.row_limit_exemption_tag in sql.markers:
        return RuleOutcome(True, "Row limit exemption is documented in a comment.")
    return RuleOutcome(
        False,
        "Query joins tables without aggregation or a row limit; add LIMIT or document an "
        f"exemption with @{context.config.row_limit_exemption_tag}.",
    )


# ---------------------------------------------------------------------------
# Governance
# ---------------------------------------------------------------------------


def check_restricted_table_access(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """Deny-listed tables require an authorization marker naming them."""
    restricted = context.config.restricted_tables
    authorized = sql.markers.get(context.config.table_authorization_tag, frozenset())

    unauthorized = []
    accessed = []
    for table in sql.referenced_tables:
        short = table.rsplit(".", 1)[-1]
        if table not in restricted and short not in restricted:
            continue
        accessed.append(table)
        if table not in authorized and short not in authorized:
            unauthorized.append(table)

    if unauthorized:
        return RuleOutcome(
            False,
            f"Restricted table(s) {', '.join(unauthorized)} accessed without an "
            f"@{context.config.table_authorization_tag} marker.",
        )
    if accessed:
        return RuleOutcome(True, f"Restricted table(s) {', '.join(accessed)} are authorized.")
    return RuleOutcome(True, "No restricted tables accessed.")


def check_pii_column_access(sql: PreparedSql, context: RuleContext) -> RuleOutcome:
    """PII columns require an approval marker naming them."""
    approved = sql.markers.get(context.config.pii_approval_tag, frozenset())
    referenced = sorted(
        name for name in context.config.pii_columns if _rx(column_pattern(name)).search(sql.masked)
    )
    unapproved = [name for name in referenced if name not in approved]
    if unapproved:
        return RuleOutcome(
            False,
            f"PII column(s) {', '.join(unapproved)} referenced without an "
            f"@{context.config.pii_approval_tag} marker.",
        )
    if referenced:
        return RuleOutcome(True, f"PII column(s) {', '.join(referenced)} are approved.")
    return RuleOutcome(True, "No PII columns referenced.")


DEFAULT_RULES: tuple[GuardrailRule, ...] = (
    GuardrailRule(
        "non_empty_statement",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "Statement is not empty",
        check_non_empty_statement,
    ),
    GuardrailRule(
        "lexically_well_formed",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "Quotes and parentheses balance; tokenizer accepts the text",
        check_lexically_well_formed,
    ),
    GuardrailRule(
        "single_statement",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "No statement chaining",
        check_single_statement,
    ),
    GuardrailRule(
        "read_only_statement",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "SELECT / WITH only, no write or locking clauses",
        check_read_only_statement,
    ),
    GuardrailRule(
        "select_list_present",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "Non-empty SELECT column list",
        check_select_list_present,
    ),
    GuardrailRule(
        "from_clause_present",
        RuleCategory.STRUCTURAL,
        Severity.BLOCKING,
        "FROM clause naming a table",
        check_from_clause_present,
    ),
    GuardrailRule(
        "tenant_filter_present",
        RuleCategory.SECURITY,
        Severity.BLOCKING,
        "Tenant column bound to a parameter in WHERE",
        check_tenant_filter_present,
    ),
    GuardrailRule(
        "no_unscoped_joins",
        RuleCategory.SECURITY,
        Severity.BLOCKING,
        "Every JOIN tenant-scoped at its statement level",
        check_no_unscoped_joins,
    ),
    GuardrailRule(
        "no_wildcard_projection",
        RuleCategory.SECURITY,
        Severity.BLOCKING,
        "No SELECT * outside EXISTS sub-selects",
        check_no_wildcard_projection,
    ),
    GuardrailRule(
        "no_dynamic_sql",
        RuleCategory.SECURITY,
        Severity.BLOCKING,
        "No string-built SQL or dynamic execution",
        check_no_dynamic_sql,
    ),
    GuardrailRule(
        "date_bound_present",
        RuleCategory.PERFORMANCE,
        Severity.WARNING,
        "Declared temporal filter bounded by parameters (blocking for large tables)",
        check_date_bound_present,
    ),
    GuardrailRule(
        "partition_pruning_present",
        RuleCategory.PERFORMANCE,
        Severity.BLOCKING,
        "Partition column in a filtering position",
        check_partition_pruning_present,
    ),
    GuardrailRule(
        "no_unbounded_result_set",
        RuleCategory.PERFORMANCE,
        Severity.WARNING,
        "Joined, non-aggregated results carry a row limit",
        check_no_unbounded_result_set,
    ),
    GuardrailRule(
        "restricted_table_access",
        RuleCategory.GOVERNANCE,
        Severity.BLOCKING,
        "Deny-listed tables need an authorization marker",
        check_restricted_table_access,
    ),
    GuardrailRule(
        "pii_column_access",
        RuleCategory.GOVERNANCE,
        Severity.BLOCKING,
        "PII columns need an approval marker",
        check_pii_column_access,
    ),
)
