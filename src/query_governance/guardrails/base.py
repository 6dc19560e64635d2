"""Rule primitives for the guardrail engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from query_governance.config import GovernanceConfig
from query_governance.contracts.models import TemplateContract
from query_governance.models import GuardrailFinding, RuleCategory, Severity
from query_governance.sql.structure import PreparedSql, parameter_pattern, prepare_sql


@dataclass(frozen=True)
class RuleContext:
    """Per-call inputs a rule may consult besides the SQL text."""

    tenant_id: str
    template_id: str = ""
    contract: Optional[TemplateContract] = None
    config: GovernanceConfig = field(default_factory=GovernanceConfig)

    @property
    def parameter(self) -> str:
        """Regex for a bound parameter token under the configured sigils."""
        return parameter_pattern(self.config.parameter_sigils)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of a rule predicate; ``severity`` overrides the rule default."""

    passed: bool
    message: str
    severity: Optional[Severity] = None


RuleCheck = Callable[[PreparedSql, RuleContext], RuleOutcome]


@dataclass(frozen=True)
class GuardrailRule:
    """One row of the declarative rule table."""

    rule_id: str
    category: RuleCategory
    severity: Severity
    description: str
    check: RuleCheck

    def __call__(
        self, sql: Union[str, PreparedSql], context: RuleContext
    ) -> GuardrailFinding:
        """Evaluate the rule against rendered SQL text."""
        prepared = sql if isinstance(sql, PreparedSql) else prepare_sql(sql)
        outcome = self.check(prepared, context)
        return GuardrailFinding(
            rule_id=self.rule_id,
            category=self.category,
            severity=outcome.severity or self.severity,
            passed=outcome.passed,
            message=outcome.message,
        )
