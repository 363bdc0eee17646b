"""
labcon Configuration

Server settings are read from an optional JSON file and from environment
variables. Environment variables take precedence over the file.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError
from .tokens import DEFAULT_TOKEN_BYTES

# Setting name -> environment variables checked in order.
ENVIRONMENT = {
    "host": ("LABCON_HOST", "HOST"),
    "port": ("LABCON_PORT", "PORT"),
    "debug": ("LABCON_DEBUG", "DEBUG"),
    "database_path": ("LABCON_DB_PATH",),
    "log_level": ("LABCON_LOG_LEVEL",),
    "log_file": ("LABCON_LOG_FILE",),
    "cors_origins": ("LABCON_CORS_ORIGINS",),
    "token_bytes": ("LABCON_TOKEN_BYTES",),
}

# Settings a config file may set to null.
NULLABLE = {"log_file"}


@dataclass
class ServerConfig:
    """Gateway server configuration."""
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    database_path: str = "labcon.db"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    token_bytes: int = DEFAULT_TOKEN_BYTES


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_origins(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(origin) for origin in value]
    return [origin.strip() for origin in str(value).split(",") if origin.strip()]


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in ("port", "token_bytes"):
            number = int(value)
            if number <= 0:
                raise ValueError(f"must be positive, got {number}")
            return number
        if name == "debug":
            return _parse_bool(value)
        if name == "cors_origins":
            return _parse_origins(value)
        if name == "log_level":
            return str(value).upper()
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r} ({e})") from e


def load_config(config_path: Optional[str] = None) -> ServerConfig:
    """
    Load server configuration.

    Args:
        config_path: JSON file with any of the ServerConfig fields. Defaults to
            the LABCON_CONFIG environment variable; a missing file is ignored.

    Returns:
        The resolved ServerConfig
    """
    config = ServerConfig()
    known = {f.name for f in fields(ServerConfig)}

    config_path = config_path or os.getenv("LABCON_CONFIG")
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            try:
                file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

        for name, value in file_config.items():
            if name not in known:
                raise ConfigurationError(f"Unknown setting {name!r} in {config_path}")
            if value is None and name not in NULLABLE:
                raise ConfigurationError(f"Setting {name!r} in {config_path} must not be null")
            setattr(config, name, value if value is None else _coerce(name, value))

    # Override with environment variables
    for name, variables in ENVIRONMENT.items():
        for variable in variables:
            value = os.getenv(variable)
            if value is not None and value != "":
                setattr(config, name, _coerce(name, value))
                break

    return config
