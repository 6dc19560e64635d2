"""Tests for performance guardrail rules."""

import pytest

from query_governance.config import GovernanceConfig
from query_governance.contracts import TemplateContract
from query_governance.guardrails import DEFAULT_RULES, RuleContext
from query_governance.models import RuleCategory, Severity

RULES = {rule.rule_id: rule for rule in DEFAULT_RULES}

CONTRACT = TemplateContract(
    template_id="ar_spike_14v60",
    required_filters=("tenant_id", "as_of_date"),
    projected_columns=("customer_id", "overdue_14d", "overdue_prev_60d", "spike_pct"),
    partition_columns=("yyyy_mm",),
)


def _check(rule_id, sql, **kwargs):
    kwargs.setdefault("tenant_id", "t123")
    kwargs.setdefault("template_id", CONTRACT.template_id)
    kwargs.setdefault("contract", CONTRACT)
    return RULES[rule_id](sql, RuleContext(**kwargs))


class TestDateBound:
    """Declared temporal filters must be bounded by parameters."""

    @pytest.mark.parametrize(
        "predicate",
        [
            "as_of_date BETWEEN @start AND @end",
            "i.as_of_date >= @start AND i.as_of_date < @end",
            "as_of_date = @as_of_date",
            "as_of_date >= DATE(@start)",
            "as_of_date BETWEEN @as_of_date - INTERVAL '60 days' AND @as_of_date",
            "@as_of_date >= as_of_date",
        ],
    )
    def test_bounded_predicates_pass(self, predicate):
        """Ranges, equality and function-wrapped parameters count as bounds."""
        sql = f"SELECT a FROM ar_invoices i WHERE tenant_id = @tenant_id AND {predicate}"
        finding = _check("date_bound_present", sql)
        assert finding.passed, finding.message
        assert finding.category == RuleCategory.PERFORMANCE

    def test_missing_bound_is_a_warning(self):
        """Without a large-table flag a missing bound only warns."""
        finding = _check("date_bound_present", "SELECT a FROM t WHERE tenant_id = @tenant_id")
        assert not finding.passed
        assert finding.severity == Severity.WARNING
        assert "as_of_date" in finding.message

    def test_literal_date_is_not_a_bound(self):
        """Hardcoded dates do not satisfy the rule."""
        sql = "SELECT a FROM t WHERE as_of_date BETWEEN '2025-01-01' AND '2025-01-31'"
        assert not _check("date_bound_present", sql).passed

    def test_large_table_template_blocks(self):
        """Templates flagged as large-table escalate to BLOCKING."""
        config = GovernanceConfig(large_table_templates={"ar_spike_14v60"})
        finding = _check("date_bound_present", "SELECT a FROM t", config=config)
        assert not finding.passed
        assert finding.severity == Severity.BLOCKING
        assert "large-table" in finding.message

    def test_not_applicable_without_temporal_filter(self):
        """Templates without a declared temporal filter pass."""
        contract = CONTRACT.model_copy(update={"required_filters": ("tenant_id",)})
        assert _check("date_bound_present", "SELECT a FROM t", contract=contract).passed
        assert _check("date_bound_present", "SELECT a FROM t", contract=None).passed


class TestPartitionPruning:
    """A partition column must appear in a filtering position."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT a FROM t WHERE yyyy_mm IN (@parts)",
            "SELECT a FROM t WHERE t.yyyy_mm = @yyyy_mm",
            "SELECT a FROM t WHERE yyyy_mm BETWEEN @p1 AND @p2",
            "SELECT a FROM t JOIN p ON p.yyyy_mm = t.yyyy_mm AND p.tenant_id = t.tenant_id",
        ],
    )
    def test_filtered_partition_passes(self, sql):
        """Comparisons, IN lists, ranges and join conditions prune partitions."""
        assert _check("partition_pruning_present", sql).passed

    def test_partition_only_projected_fails(self):
        """Selecting the partition column is not filtering on it."""
        finding = _check(
            "partition_pruning_present", "SELECT yyyy_mm FROM t WHERE tenant_id = @tenant_id"
        )
        assert not finding.passed
        assert finding.severity == Severity.BLOCKING
        assert "yyyy_mm" in finding.message

    def test_pattern_fallback_without_contract(self):
        """Without a contract, columns matching the configured pattern count."""
        sql = "SELECT a FROM t WHERE yyyy_mm = @p"
        assert _check("partition_pruning_present", sql, contract=None).passed

    def test_no_partition_column_at_all(self):
        """Nothing declared and nothing matching the pattern fails."""
        finding = _check("partition_pruning_present", "SELECT a FROM t", contract=None)
        assert not finding.passed
        assert "No partition column is declared" in finding.message


class TestUnboundedResultSet:
    """Joined, non-aggregated results need a row limit."""

    JOIN = (
        "SELECT i.a, c.b FROM ar_invoices i JOIN customers c "
        "ON c.id = i.cid AND c.tenant_id = i.tenant_id "
    )

    def test_no_join_passes(self):
        """Single-table queries are not checked."""
        assert _check("no_unbounded_result_set", "SELECT a FROM t").passed

    @pytest.mark.parametrize(
        "suffix",
        ["LIMIT 100", "LIMIT @max_rows", "FETCH FIRST 10 ROWS ONLY", "GROUP BY i.a, c.b"],
    )
    def test_limited_or_aggregated_joins_pass(self, suffix):
        """A row limit or aggregation bounds the result."""
        assert _check("no_unbounded_result_set", self.JOIN + suffix).passed

    def test_documented_exemption_passes(self):
        """An exemption marker in a comment is accepted."""
        sql = "-- @unbounded-ok: export job\n" + self.JOIN
        finding = _check("no_unbounded_result_set", sql)
        assert finding.passed
        assert "exemption" in finding.message

    def test_unbounded_join_warns(self):
        """Joined rows without a limit produce a warning, not a block."""
        finding = _check("no_unbounded_result_set", self.JOIN)
        assert not finding.passed
        assert finding.severity == Severity.WARNING
