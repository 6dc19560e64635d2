"""Tests for governance metrics."""

from query_governance.observability.metrics import (
    AUDIT_EVENTS_TOTAL,
    VALIDATE_DURATION_MS,
    VERDICTS_TOTAL,
    GovernanceMetrics,
    metrics_enabled,
)


class _Meter:
    def __init__(self):
        self.created = []
        self.calls = []

    def create_counter(self, name, unit="1", description=""):
        self.created.append(("counter", name, unit))
        return _Instrument(self, name)

    def create_histogram(self, name, unit="1", description=""):
        self.created.append(("histogram", name, unit))
        return _Instrument(self, name)


class _Instrument:
    def __init__(self, meter, name):
        self._meter = meter
        self._name = name

    def add(self, value, attributes):
        self._meter.calls.append(("add", self._name, value, attributes))

    def record(self, value, attributes):
        self._meter.calls.append(("record", self._name, value, attributes))


def test_disabled_by_default():
    """Without env or exporter configuration metrics are off."""
    assert metrics_enabled() is False


def test_explicit_override(monkeypatch):
    """GOVERNANCE_METRICS_ENABLED wins over exporter detection."""
    monkeypatch.setenv("GOVERNANCE_METRICS_ENABLED", "true")
    assert metrics_enabled() is True
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
    monkeypatch.setenv("GOVERNANCE_METRICS_ENABLED", "off")
    assert metrics_enabled() is False
    monkeypatch.setenv("GOVERNANCE_METRICS_ENABLED", "bogus")
    assert metrics_enabled() is False


def test_exporter_endpoint_enables(monkeypatch):
    """An OTLP endpoint enables metrics unless the metrics exporter is 'none'."""
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT", "http://collector:4317")
    assert metrics_enabled() is True
    monkeypatch.setenv("OTEL_METRICS_EXPORTER", "none")
    assert metrics_enabled() is False


def test_verdict_and_audit_instruments(monkeypatch):
    """Each instrument is created once and records string attributes."""
    monkeypatch.setenv("GOVERNANCE_METRICS_ENABLED", "1")
    meter = _Meter()
    governance = GovernanceMetrics(meter=meter)

    governance.record_verdict("BLOCK", False, 12.5)
    governance.record_verdict("ALLOW", True, 3)
    governance.record_audit_event("query_blocked")

    assert meter.created == [
        ("counter", VERDICTS_TOTAL, "1"),
        ("histogram", VALIDATE_DURATION_MS, "ms"),
        ("counter", AUDIT_EVENTS_TOTAL, "1"),
    ]
    assert meter.calls == [
        ("add", VERDICTS_TOTAL, 1, {"decision": "BLOCK", "contract_ok": "false"}),
        ("record", VALIDATE_DURATION_MS, 12.5, {"decision": "BLOCK"}),
        ("add", VERDICTS_TOTAL, 1, {"decision": "ALLOW", "contract_ok": "true"}),
        ("record", VALIDATE_DURATION_MS, 3.0, {"decision": "ALLOW"}),
        ("add", AUDIT_EVENTS_TOTAL, 1, {"event_type": "query_blocked"}),
    ]


def test_nothing_recorded_when_disabled():
    """Disabled metrics never touch the meter."""
    meter = _Meter()
    governance = GovernanceMetrics(meter=meter)
    governance.record_verdict("ALLOW", True, 1.0)
    governance.record_audit_event("query_allowed")
    assert meter.created == []
    assert meter.calls == []


def test_emission_errors_are_contained(monkeypatch):
    """A failing meter never breaks validation."""
    monkeypatch.setenv("GOVERNANCE_METRICS_ENABLED", "1")

    class BrokenMeter:
        def create_counter(self, **kwargs):
            raise RuntimeError("exporter gone")

        create_histogram = create_counter

    GovernanceMetrics(meter=BrokenMeter()).record_verdict("ALLOW", True, 1.0)
