import os
import sys
from pathlib import Path

import pytest

# Puts 'src' on sys.path before test collection so query_governance imports
# without an editable install.

if sys.version_info < (3, 10):
    print(
        f"ERROR: This project requires Python 3.10+ (found {sys.version.split()[0]}).",
        file=sys.stderr,
    )
    sys.exit(1)


ROOT_DIR = Path(__file__).parent.absolute()
src_dir = ROOT_DIR / "src"

if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def _isolate_governance_env(monkeypatch):
    """Keep GOVERNANCE_* / OTEL_* settings from the developer shell out of tests."""
    for name in list(os.environ):
        if name.startswith(("GOVERNANCE_", "OTEL_EXPORTER_OTLP", "OTEL_METRICS_EXPORTER")):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_audit_buffer():
    """Give every test a fresh audit buffer."""
    from query_governance.audit import reset_audit_event_buffer

    reset_audit_event_buffer()
    yield
    reset_audit_event_buffer()
