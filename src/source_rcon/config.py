"""
Configuration management for the Source RCON server and client.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/source-rcon/config.yml or --config path)
3. Environment variables (SOURCE_RCON_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from source_rcon.protocol import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT

DEFAULT_CONFIG_PATH = "/etc/source-rcon/config.yml"
DEFAULT_ENV_PREFIX = "SOURCE_RCON_"

# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """RCON server settings.

    Immutable for the lifetime of one running server.

    Attributes:
        host: Address to bind the listening socket to.
        port: TCP port to listen on (0 picks a free port).
        password: RCON password; generated at startup when unset.
        password_length: Length of a generated password.
        auth_timeout_seconds: Time an unauthenticated client may stay connected.
        max_clients: Connection capacity; further clients are closed on accept.
        poll_interval_seconds: Readiness poll wait; 0 is a zero-wait busy poll.
        frame_timeout_seconds: Bound on each read while completing a frame.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(
        default=DEFAULT_HOST,
        description="Address to bind the listening socket to",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        description="TCP port to listen on",
        ge=0,
        le=65535,
    )
    password: str | None = Field(
        default=None,
        description="RCON password (generated if not set)",
    )
    password_length: int = Field(
        default=8,
        description="Length of a generated password",
        ge=1,
    )
    auth_timeout_seconds: float = Field(
        default=10.0,
        description="Seconds an unauthenticated client may stay connected",
        gt=0,
    )
    max_clients: int = Field(
        default=20,
        description="Maximum number of simultaneous connections",
        ge=1,
    )
    poll_interval_seconds: float = Field(
        default=0.0,
        description="Readiness poll wait in seconds (0 = busy poll)",
        ge=0,
    )
    frame_timeout_seconds: float = Field(
        default=1.0,
        description="Per-read timeout while completing a partially received frame",
        gt=0,
    )


# =============================================================================
# Client Configuration
# =============================================================================


class ClientConfig(BaseModel):
    """RCON client settings.

    Attributes:
        host: Server host to connect to.
        port: Server port to connect to.
        timeout_seconds: Connect and read timeout.
    """

    host: str = Field(default=DEFAULT_HOST, description="Server host")
    port: int = Field(default=DEFAULT_PORT, description="Server port", ge=1, le=65535)
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT,
        description="Connect and read timeout in seconds",
        gt=0,
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON lines instead of plain text.
        log_to_stdout: Log to stdout instead of stderr.
    """

    level: str = Field(default="info", description="Log level")
    json_format: bool = Field(default=True, description="Use JSON log lines")
    log_to_stdout: bool = Field(default=True, description="Log to stdout")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        server: Server settings.
        client: Client settings.
        logging: Logging configuration.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="Server settings",
    )
    client: ClientConfig = Field(
        default_factory=ClientConfig,
        description="Client settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to a bool, int or float.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value, or the original string.
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


# str fields; pydantic rejects an int for these, so "1234" must stay a string
_STRING_KEYS = frozenset({"password", "host", "level"})


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Example: SOURCE_RCON_SERVER__PORT=27016

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        leaf = parts[-1]
        current[leaf] = value if leaf in _STRING_KEYS else _parse_env_value(value)

    return result


def build_arg_parser(description: str = "Source RCON server") -> argparse.ArgumentParser:
    """Build the server command-line parser."""
    parser = argparse.ArgumentParser(
        description=description,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--host", type=str, help="Address to listen on")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on")
    parser.add_argument("--password", type=str, help="RCON password")
    parser.add_argument("--max-clients", type=int, help="Maximum simultaneous clients")
    parser.add_argument(
        "--auth-timeout", type=float, help="Seconds allowed for authentication"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments into a configuration dictionary.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments. The config file path, if any,
        is returned under the ``_config_path`` key.
    """
    parsed = build_arg_parser().parse_args(args)

    result: dict[str, Any] = {}
    server: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config
    if parsed.host is not None:
        server["host"] = parsed.host
    if parsed.port is not None:
        server["port"] = parsed.port
    if parsed.password is not None:
        server["password"] = parsed.password
    if parsed.max_clients is not None:
        server["max_clients"] = parsed.max_clients
    if parsed.auth_timeout is not None:
        server["auth_timeout_seconds"] = parsed.auth_timeout
    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if server:
        result["server"] = server

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            CLI --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--port", "27016"])
        >>> config.server.port
        27016
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        else:
            default_path = Path(DEFAULT_CONFIG_PATH)
            if default_path.exists():
                config_path = default_path
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
