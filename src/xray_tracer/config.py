"""
Configuration for the recorder and the local collector daemon.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError, InvalidDaemonAddressError

logger = logging.getLogger(__name__)

DEFAULT_DAEMON_HOST = "127.0.0.1"
DEFAULT_DAEMON_PORT = 2000
DEFAULT_SERVICE_NAME = "service"

DAEMON_ADDRESS_ENV = "AWS_XRAY_DAEMON_ADDRESS"
TRACING_NAME_ENV = "AWS_XRAY_TRACING_NAME"
CONTEXT_MISSING_ENV = "AWS_XRAY_CONTEXT_MISSING"
SDK_ENABLED_ENV = "AWS_XRAY_SDK_ENABLED"

LOG_ERROR = "LOG_ERROR"
RUNTIME_ERROR = "RUNTIME_ERROR"
IGNORE_ERROR = "IGNORE_ERROR"
CONTEXT_MISSING_STRATEGIES = (LOG_ERROR, RUNTIME_ERROR, IGNORE_ERROR)


def _parse_host_port(value: str) -> Tuple[str, int]:
    host, sep, port = value.strip().rpartition(":")
    if not sep or not host:
        raise InvalidDaemonAddressError(f"Invalid daemon address '{value}': expected host:port")
    try:
        port_number = int(port)
    except ValueError:
        raise InvalidDaemonAddressError(f"Invalid daemon port in '{value}'") from None
    if not 0 < port_number < 65536:
        raise InvalidDaemonAddressError(f"Daemon port out of range in '{value}'")
    return host, port_number


@dataclass(frozen=True)
class DaemonAddress:
    """UDP and TCP endpoints of the local collector daemon."""
    udp_host: str = DEFAULT_DAEMON_HOST
    udp_port: int = DEFAULT_DAEMON_PORT
    tcp_host: str = DEFAULT_DAEMON_HOST
    tcp_port: int = DEFAULT_DAEMON_PORT

    @property
    def udp(self) -> Tuple[str, int]:
        return self.udp_host, self.udp_port

    @property
    def tcp(self) -> Tuple[str, int]:
        return self.tcp_host, self.tcp_port

    @property
    def tcp_base_url(self) -> str:
        return f"http://{self.tcp_host}:{self.tcp_port}"


def parse_daemon_address(value: Optional[str]) -> DaemonAddress:
    """
    Parse a daemon address string.

    Accepts ``host:port`` (same endpoint for UDP and TCP) or
    ``tcp:host:port udp:host:port`` in either order.

    Args:
        value: Address string, or None/empty for the default

    Returns:
        DaemonAddress

    Raises:
        InvalidDaemonAddressError: If the string cannot be parsed
    """
    if not value or not value.strip():
        return DaemonAddress()

    parts = value.split()
    if len(parts) == 1:
        host, port = _parse_host_port(parts[0])
        return DaemonAddress(udp_host=host, udp_port=port, tcp_host=host, tcp_port=port)

    if len(parts) != 2:
        raise InvalidDaemonAddressError(f"Invalid daemon address '{value}'")

    endpoints = {}
    for part in parts:
        scheme, sep, rest = part.partition(":")
        scheme = scheme.lower()
        if not sep or scheme not in ("tcp", "udp") or scheme in endpoints:
            raise InvalidDaemonAddressError(f"Invalid daemon address '{value}'")
        endpoints[scheme] = _parse_host_port(rest)

    udp_host, udp_port = endpoints["udp"]
    tcp_host, tcp_port = endpoints["tcp"]
    return DaemonAddress(udp_host=udp_host, udp_port=udp_port, tcp_host=tcp_host, tcp_port=tcp_port)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


@dataclass
class RecorderConfig:
    """Configuration for a Recorder."""
    service_name: str = DEFAULT_SERVICE_NAME
    daemon_address: DaemonAddress = field(default_factory=DaemonAddress)
    sampling: bool = True
    sampling_rules: Optional[Union[str, Path]] = None
    context_missing: str = LOG_ERROR
    enabled: bool = True
    service_version: Optional[str] = None
    origin: Optional[str] = None

    def __post_init__(self):
        if self.context_missing not in CONTEXT_MISSING_STRATEGIES:
            raise ConfigurationError(
                f"Unknown context missing strategy '{self.context_missing}'. "
                f"Expected one of {', '.join(CONTEXT_MISSING_STRATEGIES)}"
            )

    @classmethod
    def from_env(cls, **overrides) -> "RecorderConfig":
        """
        Build a configuration from ``AWS_XRAY_*`` environment variables.

        Args:
            **overrides: Values that take precedence over the environment

        Returns:
            RecorderConfig
        """
        values = {}
        if os.getenv(TRACING_NAME_ENV):
            values["service_name"] = os.environ[TRACING_NAME_ENV]
        if os.getenv(DAEMON_ADDRESS_ENV):
            values["daemon_address"] = parse_daemon_address(os.environ[DAEMON_ADDRESS_ENV])
        if os.getenv(CONTEXT_MISSING_ENV):
            values["context_missing"] = os.environ[CONTEXT_MISSING_ENV].strip().upper()
        values["enabled"] = _parse_bool(os.getenv(SDK_ENABLED_ENV), True)
        values.update(overrides)
        return cls(**values)


class DaemonSocketConfig(BaseModel):
    """Socket section of the daemon configuration file."""
    udp_address: str = Field(f"{DEFAULT_DAEMON_HOST}:{DEFAULT_DAEMON_PORT}", alias="UDPAddress")
    tcp_address: str = Field(f"{DEFAULT_DAEMON_HOST}:{DEFAULT_DAEMON_PORT}", alias="TCPAddress")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class DaemonLoggingConfig(BaseModel):
    """Logging section of the daemon configuration file."""
    log_level: str = Field("info", alias="LogLevel")
    log_path: Optional[str] = Field(None, alias="LogPath")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class DaemonConfig(BaseModel):
    """
    The collector daemon's YAML configuration.

    Only the socket addresses are consumed by the recorder; the remaining
    fields are parsed so that a shared config file validates in one place.
    """
    version: int = Field(2, alias="Version")
    region: Optional[str] = Field(None, alias="Region")
    socket: DaemonSocketConfig = Field(default_factory=DaemonSocketConfig, alias="Socket")
    local_mode: bool = Field(False, alias="LocalMode")
    role_arn: Optional[str] = Field(None, alias="RoleARN")
    logging: DaemonLoggingConfig = Field(default_factory=DaemonLoggingConfig, alias="Logging")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True
        extra = "allow"

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DaemonConfig":
        """
        Load a daemon configuration file.

        Raises:
            ConfigurationError: If the file cannot be read or does not validate
        """
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read daemon config '{path}': {e}") from e

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Daemon config '{path}' must be a mapping")

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid daemon config '{path}': {e}") from e

    @property
    def daemon_address(self) -> DaemonAddress:
        udp_host, udp_port = _parse_host_port(self.socket.udp_address)
        tcp_host, tcp_port = _parse_host_port(self.socket.tcp_address)
        return DaemonAddress(udp_host=udp_host, udp_port=udp_port, tcp_host=tcp_host, tcp_port=tcp_port)
