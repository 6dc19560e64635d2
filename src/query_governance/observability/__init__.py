"""Tracing and optional metrics for the governance layer."""

from opentelemetry import trace

from query_governance.observability.metrics import (
    GovernanceMetrics,
    governance_metrics,
    metrics_enabled,
)


def get_tracer(name: str):
    """Return an OpenTelemetry tracer for the provided module name."""
    return trace.get_tracer(name)


__all__ = ["GovernanceMetrics", "get_tracer", "governance_metrics", "metrics_enabled"]
