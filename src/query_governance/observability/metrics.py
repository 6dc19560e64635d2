"""Governance metrics: verdict counts, validation latency and audit event counts.

Instruments are only created once metrics are enabled, either explicitly with
``GOVERNANCE_METRICS_ENABLED`` or implicitly by a configured OTLP exporter.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Optional

from opentelemetry import metrics

from query_governance.config.env import read_flag

logger = logging.getLogger(__name__)

VERDICTS_TOTAL = "governance.verdicts_total"
VALIDATE_DURATION_MS = "governance.validate.duration_ms"
AUDIT_EVENTS_TOTAL = "governance.audit.events_total"

# name -> (kind, unit, description)
_INSTRUMENTS = {
    VERDICTS_TOTAL: ("counter", "1", "Validation verdicts by decision"),
    VALIDATE_DURATION_MS: ("histogram", "ms", "Validation pipeline latency"),
    AUDIT_EVENTS_TOTAL: ("counter", "1", "Governance decision audit events"),
}


def _exporter_configured() -> bool:
    if (os.getenv("OTEL_METRICS_EXPORTER") or "").strip().lower() == "none":
        return False
    return any(
        (os.getenv(name) or "").strip()
        for name in ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT")
    )


def metrics_enabled() -> bool:
    """``GOVERNANCE_METRICS_ENABLED`` wins; otherwise follow the OTLP exporter config."""
    try:
        flag = read_flag("metrics_enabled")
    except ValueError as exc:
        logger.warning("%s Governance metrics disabled.", exc)
        return False
    if flag is not None:
        return flag
    return _exporter_configured()


class GovernanceMetrics:
    """The three instruments the governance layer reports."""

    def __init__(self, meter_name: str = "query-governance", meter: Optional[Any] = None):
        self._meter_name = meter_name
        self._meter = meter
        self._instruments: dict[str, Any] = {}
        self._lock = threading.Lock()

    def record_verdict(self, decision: str, contract_ok: bool, duration_ms: float) -> None:
        """Count one verdict and record how long the validation took."""
        if not metrics_enabled():
            return
        self._emit(
            VERDICTS_TOTAL,
            1,
            {"decision": decision, "contract_ok": "true" if contract_ok else "false"},
        )
        self._emit(VALIDATE_DURATION_MS, float(duration_ms), {"decision": decision})

    def record_audit_event(self, event_type: str) -> None:
        """Count one emitted audit event."""
        if not metrics_enabled():
            return
        self._emit(AUDIT_EVENTS_TOTAL, 1, {"event_type": event_type})

    def _instrument(self, name: str):
        with self._lock:
            instrument = self._instruments.get(name)
            if instrument is None:
                if self._meter is None:
                    self._meter = metrics.get_meter(self._meter_name)
                kind, unit, description = _INSTRUMENTS[name]
                create = (
                    self._meter.create_histogram
                    if kind == "histogram"
                    else self._meter.create_counter
                )
                instrument = create(name=name, unit=unit, description=description)
                self._instruments[name] = instrument
            return instrument

    def _emit(self, name: str, value: float, attributes: dict[str, str]) -> None:
        try:
            instrument = self._instrument(name)
            if _INSTRUMENTS[name][0] == "histogram":
                instrument.record(value, attributes)
            else:
                instrument.add(value, attributes)
        except Exception as exc:
            logger.debug("Metric emission failed for %s: %s", name, exc)


governance_metrics = GovernanceMetrics()
