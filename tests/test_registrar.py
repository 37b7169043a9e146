import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from dps.api_models import Action, Address, ServiceIdentity
from dps.client import RegistrationClient
from dps.control_plane import create_app
from dps.errors import DialError, NotFound, RegistrationFailed
from dps.registrar import EndpointRegistrar, LifecycleState
from dps.runtime import RegistrationTable

FRONTEND = Address("10.0.0.5", 8080)
BACKEND = Address("172.17.0.2", 80)
SCHEDULE = [100, 500, 1000, 1500]


class RecordingTable(RegistrationTable):
    def __init__(self):
        super().__init__()
        self.requests = []

    def apply(self, req):
        self.requests.append(req.model_dump(mode="json"))
        return super().apply(req)


class Plane:
    """A control plane reachable through TestClient, optionally down for the first N dials."""

    def __init__(self, down_for=0):
        self.table = RecordingTable()
        self.app = create_app(self.table)
        self.down_for = down_for
        self.dials = 0

    @property
    def requests(self):
        return self.table.requests

    def client(self):
        def factory():
            self.dials += 1
            if self.dials <= self.down_for:
                raise httpx.ConnectError("control plane not up yet")
            return TestClient(self.app)

        return RegistrationClient(server_addr="http://testserver", http_factory=factory)


def _registrar(plane, resolver, sleeps, **kw):
    return EndpointRegistrar(
        FRONTEND,
        BACKEND,
        reload=kw.pop("reload", False),
        resolver=resolver,
        client=plane.client(),
        retry_schedule_ms=kw.pop("schedule", SCHEDULE),
        startup_delay_ms=kw.pop("startup_delay_ms", 1000),
        sleep=sleeps,
    )


def test_register_reaches_running(make_resolver, sleeps):
    plane = Plane()
    resolver = make_resolver(ServiceIdentity("api", "prod", "http"))
    r = _registrar(plane, resolver, sleeps)

    r.start()

    assert r.state is LifecycleState.RUNNING
    assert plane.requests == [
        {
            "frontend_addr": "10.0.0.5",
            "frontend_port": 8080,
            "backend_addr": "172.17.0.2",
            "backend_port": 80,
            "service_name": "api",
            "environment_name": "prod",
            "proxy_mode": "http",
            "action": "REGISTER",
        }
    ]
    assert resolver.ports == [8080]
    # Only the startup pause, no retries.
    assert sleeps.delays == [1.0]
    assert len(plane.table.list_registrations()) == 1


def test_control_plane_late_start_is_retried(make_resolver, sleeps):
    plane = Plane(down_for=3)
    r = _registrar(plane, make_resolver(), sleeps, startup_delay_ms=0)

    r.start()

    assert r.state is LifecycleState.RUNNING
    assert plane.dials == 4
    assert sleeps.delays == [0.1, 0.5, 1.0]
    assert len(plane.requests) == 1


def test_control_plane_never_up_is_fatal(make_resolver, sleeps):
    plane = Plane(down_for=10)
    r = _registrar(plane, make_resolver(), sleeps, startup_delay_ms=0)

    with pytest.raises(RegistrationFailed) as ei:
        r.run()

    assert plane.dials == 4
    assert r.state is LifecycleState.TERMINATED
    assert ei.value.action == "REGISTER"
    assert isinstance(ei.value.cause.last_error, DialError)
    assert plane.requests == []


def test_discovery_errors_are_retried(make_resolver, sleeps):
    plane = Plane()
    resolver = make_resolver(errors=[NotFound(8080), NotFound(8080)])
    r = _registrar(plane, resolver, sleeps, startup_delay_ms=0)

    r.start()

    assert r.state is LifecycleState.RUNNING
    assert resolver.ports == [8080, 8080, 8080]
    assert sleeps.delays == [0.1, 0.5]


def test_reload_registers_and_terminates(make_resolver, sleeps):
    plane = Plane()
    r = _registrar(plane, make_resolver(), sleeps, reload=True)

    # Would block forever if reload mode entered the running wait.
    r.run()

    assert r.state is LifecycleState.TERMINATED
    assert sleeps.delays == []  # no startup pause on reload
    assert [req["action"] for req in plane.requests] == ["REGISTER"]

    r.close()
    assert [req["action"] for req in plane.requests] == ["REGISTER"]


def test_close_deregisters_with_fresh_identity(make_resolver, sleeps):
    plane = Plane()
    resolver = make_resolver(ServiceIdentity("api", "prod", "http"))
    r = _registrar(plane, resolver, sleeps, startup_delay_ms=0)
    r.start()

    resolver.identity = ServiceIdentity("api", "staging", "http")
    r.close()

    assert r.state is LifecycleState.TERMINATED
    assert [(q["action"], q["environment_name"]) for q in plane.requests] == [
        ("REGISTER", "prod"),
        ("DEREGISTER", "staging"),
    ]
    assert plane.table.list_registrations() == []


def test_close_failure_is_raised_and_terminates(make_resolver, sleeps):
    plane = Plane()
    r = _registrar(plane, make_resolver(), sleeps, startup_delay_ms=0)
    r.start()
    plane.down_for = 100

    with pytest.raises(RegistrationFailed) as ei:
        r.close()
    assert ei.value.action == "DEREGISTER"
    assert r.state is LifecycleState.TERMINATED


def test_run_parks_until_shutdown(make_resolver, sleeps):
    plane = Plane()
    r = _registrar(plane, make_resolver(), sleeps, startup_delay_ms=0)

    t = threading.Thread(target=r.run, daemon=True)
    t.start()
    deadline = time.monotonic() + 5
    while r.state is not LifecycleState.RUNNING and time.monotonic() < deadline:
        time.sleep(0.01)
    assert r.state is LifecycleState.RUNNING
    t.join(timeout=0.2)
    assert t.is_alive()

    r.shutdown()
    t.join(timeout=5)
    assert not t.is_alive()


def test_request_action_is_explicit(make_resolver, sleeps):
    r = _registrar(Plane(), make_resolver(), sleeps)
    assert r.build_request(Action.DEREGISTER).action is Action.DEREGISTER
    assert r.build_request(Action.REGISTER).action is Action.REGISTER


def test_start_twice_is_an_error(make_resolver, sleeps):
    r = _registrar(Plane(), make_resolver(), sleeps, reload=True)
    r.start()
    with pytest.raises(RuntimeError):
        r.start()
