from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import docker
from docker.errors import DockerException

from .api_models import ServiceIdentity
from .errors import DiscoveryError, MetadataIncomplete, NotFound
from .settings import settings

log = logging.getLogger(__name__)

# Labels looked up in Docker to identify the service, environment and proxy mode.
SERVICE_NAME_LABEL = "ServiceName"
ENVIRONMENT_NAME_LABEL = "EnvironmentName"
PROXY_MODE_LABEL = "ProxyMode"

REQUIRED_LABELS = (SERVICE_NAME_LABEL, ENVIRONMENT_NAME_LABEL)

# A container that was just created by `docker run` has not started yet.
LIVE_STATES = ["created", "running", "restarting"]


class Resolver(Protocol):
    def resolve(self, port: int) -> ServiceIdentity: ...


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


def _client() -> docker.DockerClient:
    return docker.from_env()


def host_ports(attrs: dict[str, Any], proto: str = "tcp") -> set[int]:
    """Host ports a container publishes for `proto`.

    Both the live NetworkSettings and the requested HostConfig bindings are
    consulted, since only the latter is filled in before the container starts.
    """
    sources = [
        (attrs.get("NetworkSettings") or {}).get("Ports") or {},
        (attrs.get("HostConfig") or {}).get("PortBindings") or {},
    ]
    found: set[int] = set()
    for bindings in sources:
        for spec, entries in bindings.items():
            if not spec.endswith(f"/{proto}"):
                continue
            for entry in entries or []:
                raw = (entry or {}).get("HostPort")
                if raw and str(raw).isdigit():
                    found.add(int(raw))
    return found


def identity_from_labels(ref: ContainerRef, labels: dict[str, str] | None, default_proxy_mode: str) -> ServiceIdentity:
    labels = labels or {}
    missing = [name for name in REQUIRED_LABELS if not labels.get(name)]
    if missing:
        raise MetadataIncomplete(ref.name, missing)
    return ServiceIdentity(
        service_name=labels[SERVICE_NAME_LABEL],
        environment_name=labels[ENVIRONMENT_NAME_LABEL],
        proxy_mode=labels.get(PROXY_MODE_LABEL) or default_proxy_mode,
    )


class DockerResolver:
    """Find the container publishing a host port and read its routing labels."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        default_proxy_mode: str | None = None,
        proto: str = "tcp",
    ):
        self._client = client
        self.default_proxy_mode = default_proxy_mode or settings.default_proxy_mode
        self.proto = proto

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = _client()
        return self._client

    def find_container(self, port: int) -> tuple[ContainerRef, dict[str, str]]:
        try:
            containers = self.client.containers.list(
                all=True, filters={"status": LIVE_STATES}, ignore_removed=True
            )
        except DockerException as e:
            raise DiscoveryError(f"Docker lookup failed: {type(e).__name__}: {e}") from e

        for c in containers:
            if port in host_ports(c.attrs, self.proto):
                return ContainerRef(id=c.id, name=c.name), c.labels
        raise NotFound(port)

    def resolve(self, port: int) -> ServiceIdentity:
        ref, labels = self.find_container(port)
        identity = identity_from_labels(ref, labels, self.default_proxy_mode)
        log.debug("Port %s belongs to %s (%s)", port, ref.name, identity)
        return identity

    def container_fields_for_port(self, port: int) -> ServiceIdentity:
        return self.resolve(port)
