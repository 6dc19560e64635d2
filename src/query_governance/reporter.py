"""Verdict reporting: structured reports, the execute gate, audit emission."""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from query_governance.audit import AuditEventType, emit_audit_event
from query_governance.models import Decision, ValidationVerdict

logger = logging.getLogger(__name__)


def sql_text_hash(sql_text: str) -> str:
    """SHA-256 of the SQL text as submitted (comments included)."""
    return hashlib.sha256(sql_text.encode("utf-8")).hexdigest()


class FindingReport(BaseModel):
    """One finding in the output contract."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    category: str
    severity: str
    passed: bool
    message: str


class VerdictReport(BaseModel):
    """Machine-readable verdict for the agent and for audit review."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    tenant_id: str
    decision: Decision
    contract_ok: bool
    findings: list[FindingReport] = Field(default_factory=list)
    blocking_rules: list[str] = Field(default_factory=list)
    warning_rules: list[str] = Field(default_factory=list)
    sql_hash: Optional[str] = None
    trace_id: Optional[str] = None


class VerdictReporter:
    """Renders verdicts; never raises for a BLOCK decision."""

    def __init__(self, emit_audit: bool = True) -> None:
        """Optionally emit one audit event per reported verdict."""
        self._emit_audit = emit_audit

    def report(
        self,
        verdict: ValidationVerdict,
        *,
        sql_text: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> VerdictReport:
        """Build the structured report for a verdict.

        Args:
            verdict: Outcome of a validation call.
            sql_text: The validated SQL; only its hash is reported.
            trace_id: Caller's provenance id, carried through unchanged.
        """
        report = VerdictReport(
            template_id=verdict.template_id,
            tenant_id=verdict.tenant_id,
            decision=verdict.decision,
            contract_ok=verdict.contract_ok,
            findings=[FindingReport(**finding.to_dict()) for finding in verdict.findings],
            blocking_rules=[finding.rule_id for finding in verdict.blocking_findings],
            warning_rules=[finding.rule_id for finding in verdict.warnings],
            sql_hash=sql_text_hash(sql_text) if sql_text is not None else None,
            trace_id=trace_id,
        )
        if self._emit_audit:
            emit_audit_event(
                AuditEventType.QUERY_ALLOWED if verdict.allowed else AuditEventType.QUERY_BLOCKED,
                tenant_id=verdict.tenant_id,
                template_id=verdict.template_id,
                trace_id=trace_id,
                metadata={
                    "decision": verdict.decision,
                    "contract_ok": verdict.contract_ok,
                    "blocking_rules": report.blocking_rules,
                    "warning_rules": report.warning_rules,
                    "query_hash": report.sql_hash,
                },
            )
        if not verdict.allowed:
            logger.info(
                "Blocked template %s for tenant %s: %s",
                verdict.template_id,
                verdict.tenant_id,
                ", ".join(report.blocking_rules) or "contract not satisfied",
            )
        return report

    def to_json(
        self,
        verdict: ValidationVerdict,
        *,
        sql_text: Optional[str] = None,
        trace_id: Optional[str] = None,
        indent: Optional[int] = None,
    ) -> str:
        """Serialize the report for a verdict to JSON."""
        return self.report(verdict, sql_text=sql_text, trace_id=trace_id).model_dump_json(
            indent=indent
        )

    @staticmethod
    def should_execute(verdict: ValidationVerdict) -> bool:
        """Return True only for ALLOW verdicts."""
        return verdict.decision == Decision.ALLOW
