"""Declarative guardrail rules over rendered SQL."""

from query_governance.guardrails.base import GuardrailRule, RuleContext, RuleOutcome
from query_governance.guardrails.engine import GuardrailEngine, evaluate_guardrails
from query_governance.guardrails.rules import DEFAULT_RULES

__all__ = [
    "DEFAULT_RULES",
    "GuardrailEngine",
    "GuardrailRule",
    "RuleContext",
    "RuleOutcome",
    "evaluate_guardrails",
]
