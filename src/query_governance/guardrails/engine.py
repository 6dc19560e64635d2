"""Guardrail engine: evaluates the rule table against rendered SQL."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Union

from query_governance.guardrails.base import GuardrailRule, RuleContext
from query_governance.guardrails.rules import DEFAULT_RULES
from query_governance.models import GuardrailFinding, Severity
from query_governance.sql.structure import PreparedSql, prepare_sql

logger = logging.getLogger(__name__)


class GuardrailEngine:
    """Runs every guardrail rule, in table order, against one statement.

    The engine holds no per-call state; a single instance may be shared by
    concurrent validations.
    """

    def __init__(self, rules: Optional[Iterable[GuardrailRule]] = None) -> None:
        """Use the given rule table, or the default one."""
        self._rules = tuple(DEFAULT_RULES if rules is None else rules)
        seen = set()
        for rule in self._rules:
            if rule.rule_id in seen:
                raise ValueError(f"Duplicate guardrail rule id '{rule.rule_id}'.")
            seen.add(rule.rule_id)

    @property
    def rules(self) -> tuple[GuardrailRule, ...]:
        """The rule table in evaluation order."""
        return self._rules

    def rule_ids(self) -> list[str]:
        """Return rule ids in evaluation order."""
        return [rule.rule_id for rule in self._rules]

    def evaluate(
        self, sql: Union[str, PreparedSql], context: RuleContext
    ) -> list[GuardrailFinding]:
        """Return exactly one finding per rule, in table order.

        A rule that raises is reported as a failed BLOCKING finding instead of
        aborting the evaluation.
        """
        prepared = sql if isinstance(sql, PreparedSql) else prepare_sql(sql)
        findings = []
        for rule in self._rules:
            try:
                findings.append(rule(prepared, context))
            except Exception as exc:
                logger.exception("Guardrail rule %s crashed", rule.rule_id)
                findings.append(
                    GuardrailFinding(
                        rule_id=rule.rule_id,
                        category=rule.category,
                        severity=Severity.BLOCKING,
                        passed=False,
                        message=f"Rule evaluation failed: {type(exc).__name__}: {exc}",
                    )
                )
        return findings


def evaluate_guardrails(sql: str, context: RuleContext) -> list[GuardrailFinding]:
    """Evaluate the default rule table (convenience wrapper)."""
    return GuardrailEngine().evaluate(sql, context)
