"""Error taxonomy for the query governance layer.

Runtime failures inside a validation are captured as findings on the verdict;
these exceptions exist for load-time problems, malformed invocations, and for
callers that explicitly opt into exception-based handling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from query_governance.models import ValidationVerdict


class GovernanceError(Exception):
    """Base class for all governance errors."""

    reason_code = "governance_error"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        """Store a human-readable message and optional structured details."""
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class ContractNotFound(GovernanceError, KeyError):
    """Raised when a template id has no registered contract."""

    reason_code = "contract_not_found"

    def __init__(self, template_id: str) -> None:
        """Build the error for an unknown template id."""
        super().__init__(
            f"No contract registered for template '{template_id}'.",
            details={"template_id": template_id},
        )
        self.template_id = template_id

    def __str__(self) -> str:
        """Avoid KeyError's repr-quoting of the message."""
        return self.message


class ContractLoadError(GovernanceError, ValueError):
    """Raised when contract records cannot be loaded into a registry."""

    reason_code = "contract_load_error"


class ContractViolation(GovernanceError):
    """Raised when a declared contract fails its consistency checks."""

    reason_code = "contract_violation"

    def __init__(
        self,
        message: str,
        *,
        violations: Optional[list[Any]] = None,
        verdict: Optional["ValidationVerdict"] = None,
    ) -> None:
        """Attach the violations (and verdict, when raised from one)."""
        super().__init__(message)
        self.violations = list(violations or [])
        self.verdict = verdict


class GuardrailViolation(GovernanceError):
    """Raised when a BLOCKING guardrail rule failed."""

    reason_code = "guardrail_violation"

    def __init__(
        self,
        message: str,
        *,
        rule_ids: Optional[list[str]] = None,
        verdict: Optional["ValidationVerdict"] = None,
    ) -> None:
        """Attach the failing rule ids (and verdict, when raised from one)."""
        super().__init__(message, details={"rule_ids": list(rule_ids or [])})
        self.rule_ids = list(rule_ids or [])
        self.verdict = verdict


class UpstreamUnavailable(GovernanceError):
    """Raised when the contract lookup or SQL render failed or timed out."""

    reason_code = "upstream_unavailable"

    def __init__(self, dependency: str, message: str) -> None:
        """Record which upstream dependency failed."""
        super().__init__(message, details={"dependency": dependency})
        self.dependency = dependency


class InvalidValidationRequest(GovernanceError, ValueError):
    """Raised for malformed invocations (missing or ill-typed inputs)."""

    reason_code = "invalid_request"
