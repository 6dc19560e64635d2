"""Structured audit stream for governance decisions."""

from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field

from query_governance.config.env import read_number
from query_governance.observability.metrics import governance_metrics

logger = logging.getLogger(__name__)

_MAX_METADATA_KEYS = 20
_MAX_METADATA_KEY_LEN = 64
_MAX_METADATA_VALUE_LEN = 256
_AUDIT_EVENT_JSON_LIMIT = 512
_SQL_TEXT_PATTERN = re.compile(
    r"\b(select|insert|update|delete|drop|alter|create|truncate|merge|grant|revoke)\b",
    flags=re.IGNORECASE,
)
_SECRET_PATTERN = re.compile(
    r"(?i)\b(password|token|secret|api_key|auth|credential)([ \t]*[=:][ \t]*)[^\s,;]+"
)
_BLOCKED_METADATA_KEY_FRAGMENTS = {
    "sql",
    "query_text",
    "params",
    "result_set",
    "rows",
    "payload",
    "prompt",
}
_DROP_VALUE = object()


class AuditEventType(str, Enum):
    """Canonical audit event types for governance decisions."""

    QUERY_ALLOWED = "query_allowed"
    QUERY_BLOCKED = "query_blocked"
    CONTRACT_NOT_FOUND = "contract_not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class AuditEvent(BaseModel):
    """Structured audit record with bounded safe metadata only."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    tenant_id: Optional[str] = None
    template_id: Optional[str] = None
    trace_id: Optional[str] = None
    timestamp: float
    metadata: dict[str, Any] = Field(default_factory=dict)


def _buffer_size(default: int = 200) -> int:
    try:
        value = read_number("audit_buffer_size", int)
    except ValueError as exc:
        logger.warning("%s Using %d.", exc, default)
        value = None
    return default if value is None else max(1, value)


def _is_blocked_metadata_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _BLOCKED_METADATA_KEY_FRAGMENTS)


def _sanitize_metadata_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return _DROP_VALUE
        return float(value)
    if isinstance(value, Enum):
        return str(value.value)
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = [_sanitize_metadata_value(item) for item in value]
        return [item for item in items if item is not _DROP_VALUE][:_MAX_METADATA_KEYS]
    if not isinstance(value, str):
        return _DROP_VALUE

    text = _SECRET_PATTERN.sub(r"\1\2<redacted>", value).strip()
    if not text:
        return ""
    if _SQL_TEXT_PATTERN.search(text):
        return "<redacted_sql>"
    return text[:_MAX_METADATA_VALUE_LEN]


def sanitize_audit_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Bound and sanitize metadata so SQL text and parameters never leak."""
    if not isinstance(metadata, dict):
        return {}

    sanitized: dict[str, Any] = {}
    for raw_key, raw_value in metadata.items():
        if len(sanitized) >= _MAX_METADATA_KEYS:
            break
        key = str(raw_key).strip().lower()[:_MAX_METADATA_KEY_LEN]
        if not key or _is_blocked_metadata_key(key):
            continue
        value = _sanitize_metadata_value(raw_value)
        if value is _DROP_VALUE:
            continue
        sanitized[key] = value
    return sanitized


class AuditEventBuffer:
    """Thread-safe bounded FIFO audit buffer."""

    def __init__(self, *, max_size: int) -> None:
        """Initialize bounded in-memory retention for recent audit events."""
        self._max_size = max(1, int(max_size))
        self._items: deque[AuditEvent] = deque(maxlen=self._max_size)
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        """Append one event to the bounded buffer."""
        with self._lock:
            self._items.append(event)

    def list_recent(self, *, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Return newest-first events with optional limit."""
        max_items = None if limit is None else max(0, int(limit))
        with self._lock:
            events = list(self._items)
        if max_items is not None:
            events = events[-max_items:] if max_items else []
        events.reverse()
        return [json.loads(event.model_dump_json()) for event in events]


_AUDIT_EVENT_BUFFER: Optional[AuditEventBuffer] = None


def get_audit_event_buffer() -> AuditEventBuffer:
    """Return singleton audit event buffer."""
    global _AUDIT_EVENT_BUFFER
    if _AUDIT_EVENT_BUFFER is None:
        _AUDIT_EVENT_BUFFER = AuditEventBuffer(
            max_size=_buffer_size()
        )
    return _AUDIT_EVENT_BUFFER


def reset_audit_event_buffer() -> None:
    """Reset singleton audit event buffer (test helper)."""
    global _AUDIT_EVENT_BUFFER
    _AUDIT_EVENT_BUFFER = None


def emit_audit_event(
    event_type: AuditEventType | str,
    *,
    tenant_id: Optional[str] = None,
    template_id: Optional[str] = None,
    trace_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """Emit a structured audit event to span, counter, and bounded buffer."""
    normalized_type = str(
        event_type.value if isinstance(event_type, AuditEventType) else event_type
    )
    safe_metadata = sanitize_audit_metadata(metadata)
    event = AuditEvent(
        event_type=normalized_type,
        tenant_id=str(tenant_id) if tenant_id else None,
        template_id=str(template_id) if template_id else None,
        trace_id=str(trace_id) if trace_id else None,
        timestamp=float(time.time()),
        metadata=safe_metadata,
    )
    get_audit_event_buffer().record(event)

    span = trace.get_current_span()
    if span is not None and span.is_recording():
        span.add_event(
            "governance.audit",
            {
                "event_type": normalized_type,
                "tenant_id": event.tenant_id or "",
                "template_id": event.template_id or "",
                "trace_id": event.trace_id or "",
                "metadata_json": json.dumps(safe_metadata, sort_keys=True)[
                    :_AUDIT_EVENT_JSON_LIMIT
                ],
            },
        )

    governance_metrics.record_audit_event(normalized_type)
    return event
