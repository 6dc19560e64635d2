"""Structured audit event helpers."""

from query_governance.audit.audit_events import (
    AuditEvent,
    AuditEventType,
    emit_audit_event,
    get_audit_event_buffer,
    reset_audit_event_buffer,
    sanitize_audit_metadata,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "emit_audit_event",
    "get_audit_event_buffer",
    "reset_audit_event_buffer",
    "sanitize_audit_metadata",
]
