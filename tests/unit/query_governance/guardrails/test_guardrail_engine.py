"""Tests for the guardrail engine."""

import pytest

from query_governance.guardrails import (
    DEFAULT_RULES,
    GuardrailEngine,
    GuardrailRule,
    RuleContext,
    RuleOutcome,
)
from query_governance.models import RuleCategory, Severity

CONTEXT = RuleContext(tenant_id="t123")


def _always(passed):
    return lambda sql, context: RuleOutcome(passed, "ok" if passed else "nope")


def test_default_rule_table_order():
    """Rules are evaluated structural first, then security, performance, governance."""
    assert GuardrailEngine().rule_ids() == [
        "non_empty_statement",
        "lexically_well_formed",
        "single_statement",
        "read_only_statement",
        "select_list_present",
        "from_clause_present",
        "tenant_filter_present",
        "no_unscoped_joins",
        "no_wildcard_projection",
        "no_dynamic_sql",
        "date_bound_present",
        "partition_pruning_present",
        "no_unbounded_result_set",
        "restricted_table_access",
        "pii_column_access",
    ]


def test_one_finding_per_rule_in_order():
    """Every rule runs, even after an earlier failure."""
    findings = GuardrailEngine().evaluate("", CONTEXT)
    assert [f.rule_id for f in findings] == [rule.rule_id for rule in DEFAULT_RULES]
    assert not findings[0].passed


def test_crashing_rule_fails_closed():
    """A rule that raises becomes a failed BLOCKING finding."""

    def explode(sql, context):
        raise RuntimeError("boom")

    engine = GuardrailEngine(
        [
            GuardrailRule("crashy", RuleCategory.PERFORMANCE, Severity.WARNING, "x", explode),
            GuardrailRule("fine", RuleCategory.SECURITY, Severity.BLOCKING, "y", _always(True)),
        ]
    )
    crashy, fine = engine.evaluate("SELECT a FROM t", CONTEXT)
    assert not crashy.passed
    assert crashy.severity == Severity.BLOCKING
    assert crashy.message == "Rule evaluation failed: RuntimeError: boom"
    assert fine.passed


def test_duplicate_rule_ids_rejected():
    """Rule ids are unique within a table."""
    rule = GuardrailRule("dup", RuleCategory.SECURITY, Severity.BLOCKING, "d", _always(True))
    with pytest.raises(ValueError):
        GuardrailEngine([rule, rule])


def test_rule_is_deterministic():
    """The same input always yields the same finding."""
    sql = "SELECT * FROM t WHERE tenant_id = 'acme'"
    engine = GuardrailEngine()
    assert engine.evaluate(sql, CONTEXT) == engine.evaluate(sql, CONTEXT)
