"""Tests for verdict reporting."""

import hashlib
import json

from query_governance.audit import get_audit_event_buffer
from query_governance.models import (
    Decision,
    GuardrailFinding,
    RuleCategory,
    Severity,
    ValidationVerdict,
)
from query_governance.reporter import VerdictReporter

SQL = "SELECT * FROM t WHERE tenant_id = 'acme'"


def _finding(rule_id, passed, severity=Severity.BLOCKING):
    return GuardrailFinding(
        rule_id=rule_id,
        category=RuleCategory.SECURITY,
        severity=severity,
        passed=passed,
        message=f"{rule_id} message",
    )


def _verdict(*findings, contract_ok=True):
    return ValidationVerdict.build(
        template_id="ar_spike_14v60",
        tenant_id="t123",
        contract_ok=contract_ok,
        findings=findings,
    )


def test_report_lists_blocking_and_warning_rules():
    """Blocking and warning rule ids are summarized."""
    verdict = _verdict(
        _finding("no_wildcard_projection", False),
        _finding("no_unbounded_result_set", False, Severity.WARNING),
        _finding("no_dynamic_sql", True),
    )
    report = VerdictReporter(emit_audit=False).report(verdict, sql_text=SQL, trace_id="trace-1")
    assert report.decision == Decision.BLOCK
    assert report.blocking_rules == ["no_wildcard_projection"]
    assert report.warning_rules == ["no_unbounded_result_set"]
    assert report.sql_hash == hashlib.sha256(SQL.encode("utf-8")).hexdigest()
    assert report.trace_id == "trace-1"
    assert [f.rule_id for f in report.findings] == [
        "no_wildcard_projection",
        "no_unbounded_result_set",
        "no_dynamic_sql",
    ]


def test_to_json_matches_output_contract():
    """JSON output carries the documented keys."""
    verdict = _verdict(_finding("no_dynamic_sql", True))
    payload = json.loads(VerdictReporter(emit_audit=False).to_json(verdict))
    assert payload["decision"] == "ALLOW"
    assert payload["contract_ok"] is True
    assert payload["findings"][0] == {
        "rule_id": "no_dynamic_sql",
        "category": "security",
        "severity": "BLOCKING",
        "passed": True,
        "message": "no_dynamic_sql message",
    }
    assert payload["sql_hash"] is None


def test_report_is_deterministic():
    """Reports carry no wall-clock data."""
    verdict = _verdict(_finding("no_dynamic_sql", True))
    reporter = VerdictReporter(emit_audit=False)
    assert reporter.to_json(verdict, sql_text=SQL) == reporter.to_json(verdict, sql_text=SQL)


def test_should_execute_gate():
    """Only ALLOW verdicts may execute."""
    assert VerdictReporter.should_execute(_verdict(_finding("a", True)))
    assert not VerdictReporter.should_execute(_verdict(_finding("a", False)))
    assert not VerdictReporter.should_execute(_verdict(_finding("a", False), contract_ok=False))


def test_audit_event_has_no_sql_text():
    """Reporting a BLOCK emits a query_blocked audit event without SQL."""
    verdict = _verdict(_finding("no_wildcard_projection", False))
    VerdictReporter().report(verdict, sql_text=SQL, trace_id="trace-9")

    events = get_audit_event_buffer().list_recent()
    assert len(events) == 1
    event = events[0]
    assert event["event_type"] == "query_blocked"
    assert event["tenant_id"] == "t123"
    assert event["trace_id"] == "trace-9"
    assert event["metadata"]["blocking_rules"] == ["no_wildcard_projection"]
    assert event["metadata"]["decision"] == "BLOCK"
    assert "acme" not in json.dumps(event)


def test_allowed_audit_event():
    """Reporting an ALLOW emits query_allowed."""
    VerdictReporter().report(_verdict(_finding("a", True)))
    assert get_audit_event_buffer().list_recent()[0]["event_type"] == "query_allowed"
