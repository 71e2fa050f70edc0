import json

import httpx
import pytest

from cmr import db
from cmr.driver import InMemoryDriver
from cmr.registry import ConsulRegistry
from cmr import strategy as strategy_mod
from cmr.settings import Settings
from cmr.strategy import ClusterStrategy

from conftest import wait_for


class FakeConsul:
    """Just enough of the agent API for end-to-end runs."""

    def __init__(self, addresses=()):
        self.addresses = list(addresses)
        self.services = {}
        self.checks = []
        self.down = False

    def __call__(self, request):
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if request.method == "PUT" and path == "/v1/agent/service/register":
            body = json.loads(request.content)
            self.services[body["name"]] = body
            return httpx.Response(200)
        if request.method == "PUT" and path.startswith("/v1/agent/check/update/"):
            body = json.loads(request.content)
            self.checks.append((path.rsplit("/", 1)[1], body["Status"], body["Output"]))
            return httpx.Response(200)
        if request.method == "GET" and path.startswith("/v1/health/service/"):
            return httpx.Response(200, json=[{"Node": {"Address": a}} for a in self.addresses])
        return httpx.Response(404)


@pytest.fixture
def consul():
    return FakeConsul(["10.0.0.1", "10.0.0.2"])


def _strategy(consul, settings, driver=None):
    registry = ConsulRegistry(settings.root, self_node=settings.node_name, transport=httpx.MockTransport(consul))
    return ClusterStrategy(settings, driver or InMemoryDriver(), registry=registry)


def test_startup_registers_beats_and_converges(consul, settings):
    driver = InMemoryDriver()

    with _strategy(consul, settings, driver) as strategy:
        assert consul.services["app"]["port"] == 4369
        assert consul.checks[0] == ("app:erlang-node", "passing", "node app@10.0.0.1 is running")
        assert wait_for(lambda: strategy.members == {"app@10.0.0.1", "app@10.0.0.2"})

        consul.addresses = ["10.0.0.2"]
        assert wait_for(lambda: strategy.members == {"app@10.0.0.2"})

    assert driver.list_connected() == {"app@10.0.0.2"}
    assert consul.checks[-1] == ("app:erlang-node", "critical", "Terminated with reason: shutdown")


def test_exception_exit_reports_reason(consul, settings):
    with pytest.raises(RuntimeError):
        with _strategy(consul, settings):
            raise RuntimeError("listener died")

    assert consul.checks[-1] == ("app:erlang-node", "critical", "Terminated with reason: RuntimeError('listener died')")


def _failed_cycles():
    return sum(1 for c in db.latest_cycles(1000) if not c["ok"])


def test_registry_outage_keeps_membership_and_recovers(consul, settings):
    with _strategy(consul, settings) as strategy:
        assert wait_for(lambda: len(strategy.members) == 2)
        consul.down = True
        assert wait_for(lambda: _failed_cycles() >= 2)
        assert strategy.members == {"app@10.0.0.1", "app@10.0.0.2"}

        consul.addresses = ["10.0.0.2", "10.0.0.3"]
        consul.down = False
        assert wait_for(lambda: strategy.members == {"app@10.0.0.2", "app@10.0.0.3"})
        assert strategy.reconciler.last_report.ok


def test_unreachable_registry_at_startup_is_not_fatal(consul, settings):
    consul.down = True

    with _strategy(consul, settings) as strategy:
        assert wait_for(lambda: strategy.reconciler.last_report is not None)
        assert strategy.members == frozenset()

    messages = [e["message"] for e in db.latest_events(200)]
    assert any(m.startswith("Service registration failed") for m in messages)


def test_from_options_validates(settings):
    with pytest.raises(ValueError):
        ClusterStrategy.from_options({"service_port": 1}, InMemoryDriver())


def test_stop_without_start_is_a_no_op(consul, settings):
    strategy = _strategy(consul, settings)

    strategy.stop()

    assert consul.checks == []


def test_malformed_node_name_is_rejected_at_construction(settings):
    bad = Settings(service_name="app", node_name="@10.0.0.1", db_path=settings.db_path)

    with pytest.raises(ValueError, match="name@host"):
        ClusterStrategy(bad, InMemoryDriver())


def test_owned_registry_is_closed_when_shutdown_fails(consul, settings, monkeypatch):
    def registry_factory(root, self_node, timeout_s):
        return ConsulRegistry(root, self_node=self_node, timeout_s=timeout_s, transport=httpx.MockTransport(consul))

    monkeypatch.setattr(strategy_mod, "ConsulRegistry", registry_factory)
    strategy = ClusterStrategy(settings, InMemoryDriver())
    strategy.start()
    real_stop = strategy.heartbeat.stop

    def broken_stop(reason="shutdown", timeout=None):
        raise RuntimeError("heartbeat wedged")

    monkeypatch.setattr(strategy.heartbeat, "stop", broken_stop)

    with pytest.raises(RuntimeError, match="heartbeat wedged"):
        strategy.stop()

    assert strategy.registry._client.is_closed
    real_stop(timeout=2)
