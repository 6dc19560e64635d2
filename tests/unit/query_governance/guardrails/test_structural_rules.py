"""Tests for structural guardrail rules."""

import pytest

from query_governance.guardrails import DEFAULT_RULES, RuleContext
from query_governance.models import RuleCategory, Severity

RULES = {rule.rule_id: rule for rule in DEFAULT_RULES}


def _check(rule_id, sql):
    return RULES[rule_id](sql, RuleContext(tenant_id="t123"))


@pytest.mark.parametrize("sql", ["", "   ", "-- only a comment\n", "/* x */ ;"])
def test_empty_statement_fails(sql):
    """Nothing but comments and semicolons is an empty statement."""
    finding = _check("non_empty_statement", sql)
    assert not finding.passed
    assert finding.category == RuleCategory.STRUCTURAL
    assert finding.severity == Severity.BLOCKING


class TestLexicallyWellFormed:
    """Quotes and parentheses must balance."""

    def test_well_formed(self):
        """A plain SELECT tokenizes."""
        assert _check("lexically_well_formed", "SELECT a FROM t WHERE b = 'x'").passed

    def test_unterminated_literal(self):
        """An open quote is reported."""
        finding = _check("lexically_well_formed", "SELECT a FROM t WHERE b = 'x")
        assert not finding.passed
        assert "unterminated" in finding.message

    def test_unbalanced_parentheses(self):
        """A missing closing paren is reported."""
        finding = _check("lexically_well_formed", "SELECT COUNT(a FROM t")
        assert not finding.passed
        assert "unbalanced parentheses" in finding.message

    def test_block_comment_inside_block_comment(self):
        """Where a nested comment ends depends on the dialect, so it is rejected."""
        sql = (
            "SELECT customer_id FROM ar_comparative_analysis "
            "/* /* */ JOIN payroll p ON p.ssn = customer_id -- */\n"
            "WHERE tenant_id = @tenant_id"
        )
        finding = _check("lexically_well_formed", sql)
        assert not finding.passed
        assert finding.severity == Severity.BLOCKING
        assert "block comment opened inside a block comment" in finding.message


class TestSingleStatement:
    """Statement chaining is rejected."""

    def test_trailing_semicolon_is_single(self):
        """One statement with a terminator passes."""
        assert _check("single_statement", "SELECT a FROM t;").passed

    def test_chained_statements(self):
        """A second statement after a semicolon fails."""
        finding = _check("single_statement", "SELECT a FROM t; DROP TABLE t")
        assert not finding.passed
        assert "2 statements" in finding.message

    def test_semicolon_in_literal(self):
        """A semicolon inside a string is not a separator."""
        assert _check("single_statement", "SELECT a FROM t WHERE b = ';'").passed


class TestReadOnly:
    """Only SELECT / WITH statements are allowed."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT a FROM t",
            "WITH x AS (SELECT a FROM t) SELECT a FROM x",
            "(SELECT a FROM t) UNION (SELECT a FROM u)",
            "SELECT updated_at, created_by FROM t",
        ],
    )
    def test_read_only_statements_pass(self, sql):
        """Plain reads pass, including columns that contain keywords."""
        assert _check("read_only_statement", sql).passed

    @pytest.mark.parametrize(
        "sql,expected",
        [
            ("DELETE FROM t WHERE tenant_id = @tenant_id", "must start with SELECT or WITH"),
            ("SELECT a INTO backup FROM t", "'INTO'"),
            ("SELECT a FROM t FOR UPDATE", "'FOR UPDATE'"),
            ("WITH d AS (DELETE FROM t RETURNING a) SELECT a FROM d", "'DELETE'"),
        ],
    )
    def test_write_statements_fail(self, sql, expected):
        """DML, DDL and locking clauses are rejected."""
        finding = _check("read_only_statement", sql)
        assert not finding.passed
        assert expected in finding.message


class TestSelectAndFrom:
    """Projection and FROM clause presence."""

    def test_empty_select_list(self):
        """SELECT with no columns fails."""
        assert not _check("select_list_present", "SELECT FROM t").passed
        assert not _check("select_list_present", "SELECT a, FROM t").passed

    def test_select_list_present(self):
        """Explicit columns pass."""
        assert _check("select_list_present", "SELECT a, b FROM t").passed

    def test_missing_from(self):
        """A SELECT without FROM fails."""
        finding = _check("from_clause_present", "SELECT 1")
        assert not finding.passed
        assert finding.message == "Statement has no FROM clause."

    def test_derived_table_counts_as_from(self):
        """A derived table satisfies the FROM requirement."""
        assert _check("from_clause_present", "SELECT a FROM (SELECT a FROM t) s").passed

    def test_every_union_branch_needs_from(self):
        """Each set-operation branch is checked."""
        assert not _check("from_clause_present", "SELECT a FROM t UNION SELECT 1").passed
