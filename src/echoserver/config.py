"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the echo server.

The listener only ever sees ONE thing: a fully resolved, immutable
ServerConfig. Where the values came from is the Bootstrap's business.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m echoserver --port 7007                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── ECHO_PORT=7007 python -m echoserver                       │
    │                                                                      │
    │   3. JSON configuration file                                        │
    │      └── PATH_TO_CONFIG=/etc/echo/config.json                      │
    │                                                                      │
    │   4. Default values (in this dataclass)                            │
    │      └── only for optional settings - host and port have none     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Example config file:

    {
        "host": "0.0.0.0",
        "port": 7007,
        "debug": true
    }

=============================================================================
"""

import json
import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .errors import ConfigurationError


# Environment variable names
ENV_CONFIG_PATH = "PATH_TO_CONFIG"
ENV_HOST = "ECHO_HOST"
ENV_PORT = "ECHO_PORT"
ENV_DEBUG = "ECHO_DEBUG"
ENV_LOG_LEVEL = "ECHO_LOG_LEVEL"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the echo server.

    Frozen: once the listener holds a config, nobody can change it
    underneath it. Use dataclasses.replace() to derive a new one.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    REQUIRED
    - host, port

    OBSERVABILITY
    - debug, metrics_interval, log_level

    TUNING
    - backlog, buffer_size, shutdown_timeout

    =========================================================================
    """

    host: str
    """
    The IP address (or hostname) to bind to.
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All IPv4 interfaces (containers)
    - "::" - All IPv6 interfaces
    """

    port: int
    """
    The port number to listen on (0-65535).
    0 asks the OS for any free port; EchoServer.address reports which.
    """

    debug: bool = False
    """
    Per-connection open/close records and periodic open-connection
    counts, all at DEBUG level.
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 8192
    """
    Most bytes read from a connection in one go.
    Also the most bytes a connection ever holds in memory: the pump
    writes a chunk back before it reads the next one.
    """

    metrics_interval: float = 2.0
    """Seconds between open-connection samples (debug mode only)."""

    shutdown_timeout: float = 5.0
    """Seconds the CLI waits for in-flight connections on shutdown."""

    log_level: str = "INFO"
    """Logging level when debug is off."""

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast: a bad port should stop the process at startup, not
        show up as a confusing bind error later.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        if not isinstance(self.host, str) or not self.host:
            raise ConfigurationError("host must be a non-empty string")

        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigurationError(f"port must be an integer, got {self.port!r}")

        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 0:
            raise ConfigurationError("backlog must be >= 0")

        if self.buffer_size < 1:
            raise ConfigurationError("buffer_size must be >= 1")

        if self.metrics_interval <= 0:
            raise ConfigurationError("metrics_interval must be > 0")

        if self.shutdown_timeout < 0:
            raise ConfigurationError("shutdown_timeout must be >= 0")

        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ServerConfig":
        """
        Build a validated config from a plain mapping.

        Values may be native JSON types or strings (as they arrive from
        the environment or the command line). Unknown keys are ignored.

        Raises:
            ConfigurationError: If host/port are missing or a value
                                cannot be converted.
        """
        missing = [key for key in ("host", "port") if values.get(key) is None]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            kwargs[key] = _convert(key, value)

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables only.

        ECHO_HOST       Server host (required)
        ECHO_PORT       Server port (required)
        ECHO_DEBUG      Debug mode, 1/true/yes/on (default: false)
        ECHO_LOG_LEVEL  Logging level (default: INFO)
        """
        return cls.from_mapping(read_env(environ))

    @classmethod
    def from_file(cls, path: str) -> "ServerConfig":
        """Create configuration from a JSON file only."""
        return cls.from_mapping(read_config_file(path))


def _convert(key: str, value: Any) -> Any:
    """Coerce one raw value to the type its field expects."""
    try:
        if key in ("port", "backlog", "buffer_size"):
            if isinstance(value, bool) or isinstance(value, float):
                raise ValueError(value)
            return int(value)
        if key in ("metrics_interval", "shutdown_timeout"):
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
        if key == "debug":
            return parse_bool(value)
        if key in ("host", "log_level"):
            if not isinstance(value, str):
                raise ValueError(value)
            return value
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from None
    return value


def parse_bool(value: Any) -> bool:
    """
    Parse a boolean from JSON or from an environment string.

    >>> parse_bool("yes"), parse_bool("0"), parse_bool(True)
    (True, False, True)
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def read_config_file(path: str) -> dict:
    """
    Load raw settings from a JSON file.

    Raises:
        ConfigurationError: Unreadable file, invalid JSON, or a JSON
                            document that is not an object.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return data


def read_env(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Collect the settings present in the environment."""
    if environ is None:
        environ = os.environ

    mapping = {
        ENV_HOST: "host",
        ENV_PORT: "port",
        ENV_DEBUG: "debug",
        ENV_LOG_LEVEL: "log_level",
    }
    return {key: environ[name] for name, key in mapping.items() if name in environ}


def resolve_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerConfig:
    """
    Merge all configuration sources into one ServerConfig.

    Args:
        config_path: JSON file to start from. Falls back to the
                     PATH_TO_CONFIG environment variable.
        environ: Environment to read (default: os.environ).
        overrides: Highest-priority values, e.g. from argparse.
                   None values mean "not given".

    Raises:
        ConfigurationError: If the merged result is incomplete or invalid.
    """
    if environ is None:
        environ = os.environ

    if config_path is None:
        config_path = environ.get(ENV_CONFIG_PATH) or None

    values: dict = {}
    if config_path:
        values.update(read_config_file(config_path))

    values.update(read_env(environ))

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    return ServerConfig.from_mapping(values)
