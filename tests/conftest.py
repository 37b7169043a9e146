import sys

# Ensure project root is importable (so `import cli` / `import dps` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import httpx
import pytest

from dps.api_models import ServiceIdentity


class FakeContainer:
    def __init__(self, name, labels=None, ports=None, bindings=None):
        self.id = f"id-{name}"
        self.name = name
        self.labels = labels or {}
        self.attrs = {
            "NetworkSettings": {"Ports": ports or {}},
            "HostConfig": {"PortBindings": bindings or {}},
        }


class FakeContainers:
    def __init__(self, containers):
        self.containers = containers
        self.calls = []

    def list(self, **kwargs):
        self.calls.append(kwargs)
        return list(self.containers)


class FakeDocker:
    def __init__(self, containers=()):
        self.containers = FakeContainers(list(containers))


class FakeResolver:
    """Returns a fixed identity, after raising any queued errors."""

    def __init__(self, identity=None, errors=()):
        self.identity = identity or ServiceIdentity("api", "prod", "http")
        self.errors = list(errors)
        self.ports = []

    def resolve(self, port):
        self.ports.append(port)
        if self.errors:
            raise self.errors.pop(0)
        return self.identity


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


class CountingTransport(httpx.MockTransport):
    def __init__(self, handler):
        super().__init__(handler)
        self.closed = 0

    def close(self):
        self.closed += 1


@pytest.fixture
def make_container():
    return FakeContainer


@pytest.fixture
def make_docker():
    return FakeDocker


@pytest.fixture
def make_resolver():
    return FakeResolver


@pytest.fixture
def make_transport():
    return CountingTransport


@pytest.fixture
def sleeps():
    return SleepRecorder()
