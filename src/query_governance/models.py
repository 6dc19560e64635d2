"""Findings and verdicts produced by the governance pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from query_governance.errors import ContractViolation, GuardrailViolation


class RuleCategory(str, Enum):
    """Guardrail rule categories."""

    SECURITY = "security"
    PERFORMANCE = "performance"
    GOVERNANCE = "governance"
    STRUCTURAL = "structural"


class Severity(str, Enum):
    """Finding severities. Only failed BLOCKING findings block execution."""

    BLOCKING = "BLOCKING"
    WARNING = "WARNING"


class Decision(str, Enum):
    """Final gate decision."""

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class GuardrailFinding:
    """One rule's verdict on one rendered query."""

    rule_id: str
    category: RuleCategory
    severity: Severity
    passed: bool
    message: str

    @property
    def is_blocking_failure(self) -> bool:
        """True when this finding forces a BLOCK decision."""
        return self.severity == Severity.BLOCKING and not self.passed

    def to_dict(self) -> dict:
        """Convert to the output-contract dictionary."""
        return {
            "rule_id": self.rule_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "passed": self.passed,
            "message": self.message,
        }


def decide(contract_ok: bool, findings: tuple[GuardrailFinding, ...]) -> Decision:
    """ALLOW iff the contract is OK and no BLOCKING finding failed."""
    if contract_ok and not any(finding.is_blocking_failure for finding in findings):
        return Decision.ALLOW
    return Decision.BLOCK


@dataclass(frozen=True)
class ValidationVerdict:
    """Aggregated outcome of one validation call.

    The decision is derived from ``contract_ok`` and ``findings``; constructing
    a verdict whose decision disagrees with them raises ``ValueError``.
    """

    template_id: str
    tenant_id: str
    decision: Decision
    contract_ok: bool
    findings: tuple[GuardrailFinding, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Enforce the decision invariant and the no-silent-block rule."""
        object.__setattr__(self, "findings", tuple(self.findings))
        expected = decide(self.contract_ok, self.findings)
        if self.decision != expected:
            raise ValueError(
                f"Inconsistent verdict: decision {self.decision.value} but findings imply "
                f"{expected.value}."
            )
        if self.decision == Decision.BLOCK and not any(not f.passed for f in self.findings):
            raise ValueError("A BLOCK verdict must carry at least one failed finding.")

    @classmethod
    def build(
        cls,
        *,
        template_id: str,
        tenant_id: str,
        contract_ok: bool,
        findings: list[GuardrailFinding] | tuple[GuardrailFinding, ...],
    ) -> "ValidationVerdict":
        """Build a verdict, deriving the decision from the findings."""
        findings = tuple(findings)
        return cls(
            template_id=template_id,
            tenant_id=tenant_id,
            decision=decide(contract_ok, findings),
            contract_ok=contract_ok,
            findings=findings,
        )

    @property
    def allowed(self) -> bool:
        """True when the query may execute."""
        return self.decision == Decision.ALLOW

    @property
    def blocking_findings(self) -> tuple[GuardrailFinding, ...]:
        """Failed BLOCKING findings, in report order."""
        return tuple(f for f in self.findings if f.is_blocking_failure)

    @property
    def warnings(self) -> tuple[GuardrailFinding, ...]:
        """Failed WARNING findings, in report order."""
        return tuple(f for f in self.findings if f.severity == Severity.WARNING and not f.passed)

    def raise_for_block(self) -> None:
        """Raise ContractViolation or GuardrailViolation when the decision is BLOCK."""
        if self.allowed:
            return
        failed = self.blocking_findings
        if not self.contract_ok:
            raise ContractViolation(
                f"Contract for template '{self.template_id}' is not satisfied.",
                violations=[f.rule_id for f in failed],
                verdict=self,
            )
        raise GuardrailViolation(
            f"Query for template '{self.template_id}' blocked by "
            f"{', '.join(f.rule_id for f in failed)}.",
            rule_ids=[f.rule_id for f in failed],
            verdict=self,
        )

    def to_dict(self) -> dict:
        """Convert to the output-contract dictionary."""
        return {
            "template_id": self.template_id,
            "tenant_id": self.tenant_id,
            "decision": self.decision.value,
            "contract_ok": self.contract_ok,
            "findings": [finding.to_dict() for finding in self.findings],
        }
