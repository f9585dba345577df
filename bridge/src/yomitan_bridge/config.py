"""Bridge configuration from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from yomitan_bridge.diagnostics import LOG_FILE_NAME

DEFAULT_HOST = "127.0.0.1"
# Clients of the Yomitan API expect this port.
DEFAULT_PORT = 19633
DEFAULT_LOG_FILE = Path.home() / ".yomitan_api" / LOG_FILE_NAME
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed."""

    pass


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as e:
        raise ConfigError(f"Invalid port: {value!r}") from e
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range: {port}")
    return port


def _parse_timeout(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid timeout: {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {timeout}")
    return timeout


def _parse_log_file(value: Optional[str]) -> Optional[Path]:
    if value is None:
        return DEFAULT_LOG_FILE
    if not value.strip():
        return None
    return Path(value).expanduser()


@dataclass(frozen=True)
class BridgeConfig:
    """Runtime settings for the bridge process."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_file: Optional[Path] = field(default=DEFAULT_LOG_FILE)
    exchange_timeout: Optional[float] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Load settings from YOMITAN_API_* environment variables.

        Raises:
            ConfigError: If a value is malformed.
        """
        env = os.environ if env is None else env
        return cls(
            host=env.get("YOMITAN_API_HOST", DEFAULT_HOST),
            port=_parse_port(env.get("YOMITAN_API_PORT", str(DEFAULT_PORT))),
            log_file=_parse_log_file(env.get("YOMITAN_API_LOG_FILE")),
            exchange_timeout=_parse_timeout(env.get("YOMITAN_API_TIMEOUT")),
            log_level=env.get("YOMITAN_API_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )

    def with_overrides(self, **overrides: Any) -> "BridgeConfig":
        """Return a copy with every non-None override applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        if "port" in values:
            values["port"] = _parse_port(str(values["port"]))
        if "exchange_timeout" in values:
            values["exchange_timeout"] = _parse_timeout(str(values["exchange_timeout"]))
        if "log_file" in values:
            values["log_file"] = _parse_log_file(str(values["log_file"]))
        return replace(self, **values)
