"""Relay server configuration."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from netfusion.config import ConfigError

DEFAULT_RELAY_CONFIG_PATH = "/etc/netfusion/relay.toml"
DEFAULT_BIND_ADDR = "0.0.0.0:4433"
DEFAULT_MAX_CONNECTIONS = 100


@dataclass
class RelayServerConfig:
    """Settings for the QUIC relay server."""

    bind_addr: str = DEFAULT_BIND_ADDR
    cert_path: str = "/etc/netfusion/relay/cert.pem"
    key_path: str = "/etc/netfusion/relay/key.pem"
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    upstream: str | None = None

    @classmethod
    def load(cls, path: str | Path = DEFAULT_RELAY_CONFIG_PATH) -> RelayServerConfig:
        """Load the configuration file; every field but upstream is required."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"failed to parse relay config: {exc}") from exc
        return cls(
            bind_addr=_required_str(data, "bind_addr"),
            cert_path=_required_str(data, "cert_path"),
            key_path=_required_str(data, "key_path"),
            max_connections=_required_count(data, "max_connections"),
            upstream=_optional_str(data, "upstream"),
        )


def _required_str(data: dict[str, Any], key: str) -> str:
    if key not in data:
        raise ConfigError(f"{key}: missing field")
    value = data[key]
    if not isinstance(value, str):
        raise ConfigError(f"{key}: expected a string")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    if key not in data:
        return None
    return _required_str(data, key)


def _required_count(data: dict[str, Any], key: str) -> int:
    if key not in data:
        raise ConfigError(f"{key}: missing field")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{key}: expected a non-negative integer")
    return value