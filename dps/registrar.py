from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Sequence

from .api_models import Action, Address, EndpointMapping, RegistrarRequest, RegistrarResponse, build_request
from .client import RegistrationClient
from .docker_ops import DockerResolver, Resolver
from .errors import RegistrationFailed, RetryExhausted, ShimError
from .retry import with_retries
from .settings import settings, validate_schedule

log = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"


class EndpointRegistrar:
    """Registers one frontend/backend pair with the control plane for the
    lifetime of the process, standing in for a docker-proxy instance.

    `run()` registers and then parks until `shutdown()` is called (normally
    from a signal handler); `close()` deregisters. In reload mode `run()`
    returns straight after registering and `close()` does nothing, so an
    already running instance keeps ownership of the mapping.
    """

    def __init__(
        self,
        frontend: Address,
        backend: Address,
        server_addr: str | None = None,
        *,
        reload: bool = False,
        resolver: Resolver | None = None,
        client: RegistrationClient | None = None,
        retry_schedule_ms: Sequence[int] | None = None,
        startup_delay_ms: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mapping = EndpointMapping(frontend=frontend, backend=backend)
        self.reload = reload
        self.resolver: Resolver = resolver or DockerResolver()
        self.client = client or RegistrationClient(server_addr=server_addr)
        self.retry_schedule_ms = tuple(retry_schedule_ms if retry_schedule_ms is not None else settings.retry_schedule_ms)
        validate_schedule(self.retry_schedule_ms)
        self.startup_delay_ms = startup_delay_ms if startup_delay_ms is not None else settings.startup_delay_ms
        self._sleep = sleep
        self._shutdown = threading.Event()
        self.state = LifecycleState.STARTING

    @property
    def frontend(self) -> Address:
        return self.mapping.frontend

    @property
    def backend(self) -> Address:
        return self.mapping.backend

    def build_request(self, action: Action) -> RegistrarRequest:
        # Labels can change between calls, so the identity is never cached.
        identity = self.resolver.resolve(self.frontend.port)
        return build_request(self.mapping, identity, action)

    def do_action(self, action: Action) -> RegistrarResponse:
        request = self.build_request(action)
        return self.client.with_connection(lambda c: c.register(request))

    def _deliver(self, action: Action) -> RegistrarResponse:
        def warn(attempt: int, err: ShimError) -> None:
            log.warning("Retrying %s after attempt %d: %s", action.value, attempt, err)

        try:
            return with_retries(
                self.retry_schedule_ms,
                lambda: self.do_action(action),
                sleep=self._sleep,
                on_retry=warn,
            )
        except RetryExhausted as e:
            raise RegistrationFailed(action.value, e) from e

    def start(self) -> None:
        """Starting -> Running, or Starting -> Terminated in reload mode.

        Raises RegistrationFailed when the schedule is exhausted; the mapping
        cannot be routed, so callers must treat this as fatal.
        """
        if self.state is not LifecycleState.STARTING:
            raise RuntimeError(f"Registrar already started (state={self.state.value})")

        log.info("Starting up: frontend %s, backend %s", self.frontend, self.backend)

        # Give Docker a moment to expose the new container.
        # TODO: watch `docker events` for the container start instead of sleeping.
        if not self.reload and self.startup_delay_ms > 0:
            self._sleep(self.startup_delay_ms / 1000.0)

        try:
            self._deliver(Action.REGISTER)
        except RegistrationFailed as e:
            log.critical("%s", e)
            self.state = LifecycleState.TERMINATED
            raise

        if self.reload:
            log.info("Reload complete for %s", self.frontend)
            self.state = LifecycleState.TERMINATED
            return
        self.state = LifecycleState.RUNNING

    def wait(self) -> None:
        """Park until shutdown() is called. No timeout."""
        if self.state is LifecycleState.RUNNING:
            self._shutdown.wait()

    def run(self) -> None:
        self.start()
        self.wait()

    def shutdown(self) -> None:
        self._shutdown.set()

    def close(self) -> None:
        """Running -> Stopping -> Terminated."""
        self._shutdown.set()
        if self.state is not LifecycleState.RUNNING:
            log.debug("Nothing to deregister (state=%s)", self.state.value)
            return

        log.info("Shutting down!")
        self.state = LifecycleState.STOPPING
        try:
            self._deliver(Action.DEREGISTER)
        except RegistrationFailed as e:
            log.critical("%s", e)
            raise
        finally:
            self.state = LifecycleState.TERMINATED
