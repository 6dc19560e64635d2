"""Tests for structured audit event emission and retention."""

from query_governance.audit import (
    AuditEventType,
    emit_audit_event,
    get_audit_event_buffer,
    reset_audit_event_buffer,
    sanitize_audit_metadata,
)


def test_audit_metadata_blocks_sql_and_params():
    """Audit metadata never retains SQL text or render parameters."""
    event = emit_audit_event(
        AuditEventType.QUERY_BLOCKED,
        tenant_id="t123",
        template_id="ar_spike_14v60",
        metadata={
            "sql_text": "SELECT * FROM payroll",
            "params": {"tenant_id": "t123"},
            "note": "DELETE FROM customer",
            "reason": "guardrail",
            "nested": {"should": "drop"},
            "auth_header": "token=abc123",
        },
    )
    assert "sql_text" not in event.metadata
    assert "params" not in event.metadata
    assert "nested" not in event.metadata
    assert event.metadata["note"] == "<redacted_sql>"
    assert event.metadata["reason"] == "guardrail"
    assert event.metadata["auth_header"] == "token=<redacted>"


def test_audit_buffer_is_bounded_fifo(monkeypatch):
    """The buffer retains only the newest N events, newest first."""
    monkeypatch.setenv("GOVERNANCE_AUDIT_BUFFER_SIZE", "2")
    reset_audit_event_buffer()

    emit_audit_event(AuditEventType.QUERY_ALLOWED, trace_id="trace-1")
    emit_audit_event(AuditEventType.QUERY_BLOCKED, trace_id="trace-2")
    emit_audit_event(AuditEventType.CONTRACT_NOT_FOUND, trace_id="trace-3")

    recent = get_audit_event_buffer().list_recent(limit=10)
    assert [item["trace_id"] for item in recent] == ["trace-3", "trace-2"]
    assert get_audit_event_buffer().list_recent(limit=1)[0]["trace_id"] == "trace-3"
    assert get_audit_event_buffer().list_recent(limit=0) == []


def test_invalid_buffer_size_falls_back(monkeypatch):
    """A malformed buffer size uses the default."""
    monkeypatch.setenv("GOVERNANCE_AUDIT_BUFFER_SIZE", "lots")
    reset_audit_event_buffer()
    for index in range(5):
        emit_audit_event(AuditEventType.QUERY_ALLOWED, trace_id=f"trace-{index}")
    assert len(get_audit_event_buffer().list_recent()) == 5


def test_sanitize_bounds_keys_and_values():
    """Metadata is bounded in key count and value length."""
    metadata = {f"key_{idx}": "x" * 500 for idx in range(40)}
    sanitized = sanitize_audit_metadata(metadata)
    assert len(sanitized) == 20
    assert all(len(value) == 256 for value in sanitized.values())
    assert sanitize_audit_metadata(None) == {}
    assert sanitize_audit_metadata({"ratio": float("nan"), "ok": 1.5}) == {"ok": 1.5}
