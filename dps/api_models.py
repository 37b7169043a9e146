from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class Action(str, Enum):
    REGISTER = "REGISTER"
    DEREGISTER = "DEREGISTER"


@dataclass(frozen=True)
class Address:
    ip: str
    port: int

    @classmethod
    def parse(cls, ip: str, port: int | str) -> "Address":
        """Validate an IP/port pair coming from the command line."""
        ip_obj = ipaddress.ip_address(ip.strip("[]"))
        port_num = int(port)
        if not 0 < port_num <= 65535:
            raise ValueError(f"Port out of range: {port_num}")
        return cls(ip=str(ip_obj), port=port_num)

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class EndpointMapping:
    frontend: Address
    backend: Address


@dataclass(frozen=True)
class ServiceIdentity:
    service_name: str
    environment_name: str
    proxy_mode: str


class RegistrarRequest(BaseModel):
    frontend_addr: str
    frontend_port: int = Field(..., ge=1, le=65535)
    backend_addr: str
    backend_port: int = Field(..., ge=1, le=65535)
    service_name: str
    environment_name: str
    proxy_mode: str
    # No default: an action must always be chosen explicitly.
    action: Action

    def key(self) -> tuple[str, int, str, int]:
        return (self.frontend_addr, self.frontend_port, self.backend_addr, self.backend_port)


class RegistrarResponse(BaseModel):
    status_code: int
    message: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def build_request(mapping: EndpointMapping, identity: ServiceIdentity, action: Action) -> RegistrarRequest:
    return RegistrarRequest(
        frontend_addr=mapping.frontend.ip,
        frontend_port=mapping.frontend.port,
        backend_addr=mapping.backend.ip,
        backend_port=mapping.backend.port,
        service_name=identity.service_name,
        environment_name=identity.environment_name,
        proxy_mode=identity.proxy_mode,
        action=action,
    )
