import sys
import time

import pytest

# Ensure project root is importable (so `import cmr` works without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from cmr import db  # noqa: E402
from cmr.registry import RegistryTransportError  # noqa: E402
from cmr.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_log(tmp_path):
    """Give every test its own sqlite event log."""
    path = str(tmp_path / "cmr.db")
    db.configure(path)
    db.init_db()
    return path


@pytest.fixture
def settings(event_log):
    return Settings(
        service_name="app",
        service_port=4369,
        root="http://consul.test:8500",
        polling_interval=20,
        heartbeat_interval=20,
        node_name="app@10.0.0.1",
        db_path=event_log,
    )


class FakeRegistry:
    """Scriptable stand-in for ConsulRegistry."""

    def __init__(self, nodes=()):
        self.nodes = set(nodes)
        self.discover_error = None
        self.health_error = None
        self.health_reports = []
        self.registrations = []

    def discover(self, service_name):
        if self.discover_error is not None:
            raise self.discover_error
        return frozenset(self.nodes)

    def register_self(self, service_name, port):
        self.registrations.append((service_name, port))

    def report_health(self, service_name, status, message):
        if self.health_error is not None:
            raise self.health_error
        self.health_reports.append((service_name, status.value, message))

    def close(self):
        pass

    def go_down(self):
        self.discover_error = RegistryTransportError("request to consul agent failed: ConnectError: refused")


@pytest.fixture
def registry():
    return FakeRegistry()


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
