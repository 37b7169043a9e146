from __future__ import annotations

import logging
import os
from typing import Callable, TypeVar

import httpx
from pydantic import ValidationError

from .api_models import RegistrarRequest, RegistrarResponse
from .errors import DialError, RemoteError
from .settings import settings

log = logging.getLogger(__name__)

T = TypeVar("T")

REGISTER_PATH = "/register"


def is_socket_path(server_addr: str) -> bool:
    return not server_addr.startswith(("http://", "https://"))


class RegistrarClient:
    """Handle passed to `with_connection` callers; wraps one open httpx client."""

    def __init__(self, http: httpx.Client):
        self._http = http

    def register(self, request: RegistrarRequest) -> RegistrarResponse:
        try:
            resp = self._http.post(REGISTER_PATH, json=request.model_dump(mode="json"))
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise DialError(f"Could not reach control plane: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"Control plane request failed: {type(e).__name__}: {e}") from e

        if not resp.is_success:
            raise RemoteError(f"Control plane answered HTTP {resp.status_code}: {resp.text}", resp.status_code)
        try:
            result = RegistrarResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RemoteError(f"Invalid control plane response: {e}", resp.status_code) from e

        log.info("Status: %s", result.status_code)
        if not result.ok:
            raise RemoteError(f"Control plane rejected {request.action.value}: {result.message}", result.status_code)
        return result


class RegistrationClient:
    """Opens a fresh connection per call and closes it afterwards.

    Calls happen once at startup and once at shutdown, so reconnecting every
    time costs nothing and avoids stale or half-open connections.
    """

    def __init__(
        self,
        server_addr: str | None = None,
        dial_timeout_s: float | None = None,
        request_timeout_s: float | None = None,
        http_factory: Callable[[], httpx.Client] | None = None,
    ):
        self.server_addr = server_addr or settings.server_addr
        self.dial_timeout_s = dial_timeout_s if dial_timeout_s is not None else settings.dial_timeout_s
        self.request_timeout_s = request_timeout_s if request_timeout_s is not None else settings.request_timeout_s
        self._http_factory = http_factory or self._default_http

    def _default_http(self) -> httpx.Client:
        timeout = httpx.Timeout(self.request_timeout_s, connect=self.dial_timeout_s)
        if is_socket_path(self.server_addr):
            transport = httpx.HTTPTransport(uds=self.server_addr)
            # Proxy environment variables must not reroute a local socket.
            return httpx.Client(transport=transport, base_url="http://localhost", timeout=timeout, trust_env=False)
        log.warning("Control plane at %s is not a local socket", self.server_addr)
        return httpx.Client(base_url=self.server_addr, timeout=timeout)

    def _dial(self) -> httpx.Client:
        if is_socket_path(self.server_addr):
            log.info("Connecting on Unix socket: %s", self.server_addr)
            if not os.path.exists(self.server_addr):
                raise DialError(f"Control plane socket {self.server_addr} does not exist")
        try:
            return self._http_factory()
        except (OSError, httpx.HTTPError) as e:
            raise DialError(f"Could not open control plane channel: {e}") from e

    def with_connection(self, action: Callable[[RegistrarClient], T]) -> T:
        http = self._dial()
        with http:
            return action(RegistrarClient(http))

    def register(self, request: RegistrarRequest) -> RegistrarResponse:
        return self.with_connection(lambda c: c.register(request))
