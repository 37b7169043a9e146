from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import ConfigurationError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def parse_schedule(raw: str) -> tuple[int, ...]:
    """Parse a comma separated list of millisecond delays, e.g. "100,500,1000"."""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    try:
        schedule = tuple(int(p) for p in parts)
    except ValueError as e:
        raise ConfigurationError(f"Invalid retry schedule {raw!r}: {e}") from e
    validate_schedule(schedule)
    return schedule


def validate_schedule(schedule: tuple[int, ...]) -> None:
    if not schedule:
        raise ConfigurationError("Retry schedule must contain at least one delay.")
    if any(ms < 0 for ms in schedule):
        raise ConfigurationError("Retry schedule delays must not be negative.")


DEFAULT_RETRY_SCHEDULE_MS: tuple[int, ...] = (100, 500, 1000, 1500)


@dataclass(frozen=True)
class Settings:
    # Control plane
    server_addr: str = os.getenv("DPS_SERVER_ADDR", "/var/run/dps/registrar.sock")
    dial_timeout_s: float = _env_float("DPS_DIAL_TIMEOUT_S", 2.0)
    request_timeout_s: float = _env_float("DPS_REQUEST_TIMEOUT_S", 5.0)

    # Registration lifecycle
    # Parsed on use so a bad value is reported by the CLI, not at import.
    retry_schedule_raw: str = field(default_factory=lambda: os.getenv("DPS_RETRY_SCHEDULE_MS", ""))
    # Docker needs a moment before a freshly created container shows up in the API.
    startup_delay_ms: int = _env_int("DPS_STARTUP_DELAY_MS", 1000)
    default_proxy_mode: str = os.getenv("DPS_DEFAULT_PROXY_MODE", "http")

    # Logging
    log_level: str = os.getenv("DPS_LOG_LEVEL", "INFO")
    log_file: str | None = os.getenv("DPS_LOG_FILE")

    # Development control plane
    serve_port: int = _env_int("DPS_SERVE_PORT", 8787)

    @property
    def retry_schedule_ms(self) -> tuple[int, ...]:
        if not self.retry_schedule_raw.strip():
            return DEFAULT_RETRY_SCHEDULE_MS
        return parse_schedule(self.retry_schedule_raw)


settings = Settings()
