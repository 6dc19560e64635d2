"""Governance layer between an NL-to-SQL agent and a multi-tenant warehouse.

Rendered SQL for a named template is checked against the template's declared
contract and a table of guardrail rules before it may execute.
"""

from query_governance.config import GovernanceConfig
from query_governance.contracts import (
    ContractRegistry,
    RenderedQuery,
    TemplateContract,
    validate_contract,
)
from query_governance.errors import (
    ContractLoadError,
    ContractNotFound,
    ContractViolation,
    GovernanceError,
    GuardrailViolation,
    InvalidValidationRequest,
    UpstreamUnavailable,
)
from query_governance.guardrails import DEFAULT_RULES, GuardrailEngine, RuleContext
from query_governance.models import (
    Decision,
    GuardrailFinding,
    RuleCategory,
    Severity,
    ValidationVerdict,
)
from query_governance.pipeline import ValidationPipeline
from query_governance.reporter import VerdictReport, VerdictReporter

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_RULES",
    "ContractLoadError",
    "ContractNotFound",
    "ContractRegistry",
    "ContractViolation",
    "Decision",
    "GovernanceConfig",
    "GovernanceError",
    "GuardrailEngine",
    "GuardrailFinding",
    "GuardrailViolation",
    "InvalidValidationRequest",
    "RenderedQuery",
    "RuleCategory",
    "RuleContext",
    "Severity",
    "TemplateContract",
    "UpstreamUnavailable",
    "ValidationPipeline",
    "ValidationVerdict",
    "VerdictReport",
    "VerdictReporter",
    "validate_contract",
]
