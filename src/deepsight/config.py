"""Runtime settings for deepsight."""

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

ENV_PREFIX = "DEEPSIGHT_"
MIN_INTERVAL = 0.1


def _parse_optional_int(value: str) -> int | None:
    if value.strip().lower() in ("", "none", "infinite"):
        return None
    attempts = int(value)
    return attempts if attempts >= 0 else None


# name -> parser for values read from the environment
_PARSERS: dict[str, Any] = {
    "host": str,
    "port": int,
    "interval": float,
    "query_timeout": float,
    "history_size": int,
    "top_processes": int,
    "queue_size": int,
    "cors_origins": str,
    "log_level": str,
    "log_file": str,
    "server_url": str,
    "reconnect_delay": float,
    "reconnect_delay_max": float,
    "reconnect_attempts": _parse_optional_int,
    "connect_timeout": float,
}


@dataclass(slots=True, frozen=True)
class Settings:
    """Server and client settings."""

    host: str = "0.0.0.0"
    port: int = 3001
    interval: float = 2.0  # seconds between sampling ticks
    query_timeout: float = 2.0  # seconds one round of metric queries may take
    history_size: int = 60
    top_processes: int = 5
    queue_size: int = 32  # outbound messages buffered per subscriber
    cors_origins: str = "*"
    log_level: str = "INFO"
    log_file: str | None = None
    server_url: str = "http://localhost:3001"
    reconnect_delay: float = 1.0
    reconnect_delay_max: float = 30.0
    reconnect_attempts: int | None = None  # None retries forever
    connect_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.interval < MIN_INTERVAL:
            raise ValueError(f"interval must be at least {MIN_INTERVAL}s, got {self.interval}")
        if self.query_timeout <= 0:
            raise ValueError(f"query_timeout must be positive, got {self.query_timeout}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.history_size < 1:
            raise ValueError("history_size must be positive")
        if self.queue_size < 1:
            raise ValueError("queue_size must be positive")
        if self.reconnect_delay <= 0 or self.reconnect_delay_max < self.reconnect_delay:
            raise ValueError("reconnect delays must satisfy 0 < delay <= delay_max")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Build settings from DEEPSIGHT_* environment variables.

        A bare PORT variable is honoured when DEEPSIGHT_PORT is not set.

        Raises:
            ValueError: If a variable cannot be parsed or fails validation.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        if "PORT" in env:
            values["port"] = int(env["PORT"])
        for name, parser in _PARSERS.items():
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            try:
                values[name] = parser(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
