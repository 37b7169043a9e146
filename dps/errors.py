from __future__ import annotations


class ShimError(Exception):
    """Base exception for registration failures."""


class ConfigurationError(ShimError):
    """Raised when settings or CLI arguments are invalid."""


class DiscoveryError(ShimError):
    """Container metadata lookup failed."""


class NotFound(DiscoveryError):
    def __init__(self, port: int):
        self.port = port
        super().__init__(f"No container publishes host port {port}")


class MetadataIncomplete(DiscoveryError):
    def __init__(self, container: str, missing: list[str]):
        self.container = container
        self.missing = list(missing)
        super().__init__(f"Container {container} is missing labels: {', '.join(self.missing)}")


class DialError(ShimError):
    """The control-plane channel could not be established."""


class RemoteError(ShimError):
    """The control plane answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RetryExhausted(ShimError):
    def __init__(self, last_error: Exception, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")


class RegistrationFailed(ShimError):
    """Raised by the registrar when an action could not be delivered."""

    def __init__(self, action: str, cause: RetryExhausted):
        self.action = action
        self.cause = cause
        super().__init__(f"Could not call control plane ({action}): {cause.last_error}")
