from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock

from .api_models import Action, RegistrarRequest

Key = tuple[str, int, str, int]


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class Registration:
    frontend_addr: str
    frontend_port: int
    backend_addr: str
    backend_port: int
    service_name: str
    environment_name: str
    proxy_mode: str
    registered_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


class RegistrationTable:
    """In-memory registrations keyed by frontend/backend address.

    Many shim processes may call in at once; every mutation holds the lock.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self.entries: dict[Key, Registration] = {}

    def apply(self, req: RegistrarRequest) -> bool:
        """Apply a request. Returns True if the table changed."""
        if req.action is Action.REGISTER:
            return self.register(req)
        return self.deregister(req.key())

    def register(self, req: RegistrarRequest) -> bool:
        with self.lock:
            prev = self.entries.get(req.key())
            reg = Registration(
                frontend_addr=req.frontend_addr,
                frontend_port=req.frontend_port,
                backend_addr=req.backend_addr,
                backend_port=req.backend_port,
                service_name=req.service_name,
                environment_name=req.environment_name,
                proxy_mode=req.proxy_mode,
            )
            if prev is not None:
                reg.registered_at = prev.registered_at
            self.entries[req.key()] = reg
            return prev is None

    def deregister(self, key: Key) -> bool:
        with self.lock:
            return self.entries.pop(key, None) is not None

    def list_registrations(self) -> list[Registration]:
        with self.lock:
            return sorted(self.entries.values(), key=lambda r: (r.service_name, r.frontend_port))
