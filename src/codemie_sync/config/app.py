"""
Configuration management for codemie-sync.

Provides YAML-based profile configuration with environment and CLI overrides.
Hierarchy: CLI > environment > YAML > defaults.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "~/.codemie/config.yaml"
MIN_INTERVAL_SECONDS = 1.0

# Environment knobs read by apply_env_overrides()
ENV_SYNC_ENABLED = "CODEMIE_SESSION_SYNC_ENABLED"
ENV_DRY_RUN = "CODEMIE_SESSION_DRY_RUN"
ENV_SYNC_INTERVAL_MS = "CODEMIE_SESSION_SYNC_INTERVAL"


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level",
    )
    file: str | None = Field(
        default="~/.codemie/logs/session-sync.log",
        description="Rotating log file path (None disables file logging)",
    )
    max_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum size of a log file before rotation",
    )
    backup_count: int = Field(
        default=5,
        description="Number of rotated log files to keep",
    )


class SessionSyncConfig(BaseModel):
    """Background session sync configuration."""

    enabled: bool = Field(
        default=True,
        description="Enable background session sync",
    )
    dry_run: bool = Field(
        default=False,
        description="Log would-be payloads instead of sending them",
    )
    interval_seconds: float = Field(
        default=120.0,
        description="Seconds between background sync passes",
    )
    batch_size: int = Field(
        default=50,
        description="Maximum number of deltas pushed per request",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single request to the analytics API",
    )
    correlation_max_retries: int = Field(
        default=10,
        description="Failed correlation attempts before a session is marked failed",
    )
    correlation_time_tolerance_seconds: float = Field(
        default=300.0,
        description="Allowed distance between session start and agent log start",
    )

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Validate interval is at least one second."""
        if v < MIN_INTERVAL_SECONDS:
            raise ValueError(f"interval_seconds must be at least {MIN_INTERVAL_SECONDS}")
        return v

    @field_validator(
        "batch_size",
        "request_timeout_seconds",
        "correlation_max_retries",
        "correlation_time_tolerance_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class SessionSettings(BaseModel):
    """Session-related settings (profile `session:` section)."""

    sync: SessionSyncConfig = Field(
        default_factory=SessionSyncConfig,
        description="Session sync configuration",
    )


class AppConfig(BaseModel):
    """
    Main configuration for codemie-sync.

    Configuration is loaded with the following priority:
    1. CLI arguments (highest)
    2. Environment variables (CODEMIE_SESSION_*)
    3. YAML profile (~/.codemie/config.yaml)
    4. Defaults (lowest)
    """

    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )
    session: SessionSettings = Field(
        default_factory=SessionSettings,
        description="Session settings",
    )

    def get_sync_config(self) -> SessionSyncConfig:
        """Get session sync configuration."""
        return self.session.sync


def load_yaml(config_file: str) -> dict[str, Any]:
    """
    Load YAML or JSON configuration file.

    Args:
        config_file: Path to YAML or JSON configuration file

    Returns:
        Dictionary with parsed content (empty if the file does not exist)

    Raises:
        ValueError: If content is invalid or the extension is not supported
    """
    config_path = Path(config_file).expanduser()

    if not config_path.exists():
        return {}

    file_ext = config_path.suffix.lower()
    if file_ext not in [".yaml", ".yml", ".json"]:
        raise ValueError(
            f"Config file must have .yaml, .yml, or .json extension, got: {file_ext}\n"
            f"File: {config_path}"
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            content = f.read()

        if file_ext == ".json":
            return json.loads(content) if content.strip() else {}

        data = yaml.safe_load(content)
        return data if data is not None else {}

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e


def _set_nested(config_dict: dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    current = config_dict
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1")


def apply_env_overrides(
    config_dict: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Apply CODEMIE_SESSION_* environment variables to a config dictionary.

    CODEMIE_SESSION_SYNC_INTERVAL is expressed in milliseconds.
    Unparseable or sub-second interval values are ignored with a warning.
    """
    env = os.environ if environ is None else environ

    enabled = env.get(ENV_SYNC_ENABLED)
    if enabled is not None:
        _set_nested(config_dict, "session.sync.enabled", _parse_bool(enabled))

    dry_run = env.get(ENV_DRY_RUN)
    if dry_run is not None:
        _set_nested(config_dict, "session.sync.dry_run", _parse_bool(dry_run))

    interval = env.get(ENV_SYNC_INTERVAL_MS)
    if interval:
        try:
            interval_seconds = int(interval) / 1000
        except ValueError:
            logger.warning(f"Ignoring unparseable {ENV_SYNC_INTERVAL_MS}={interval!r}")
        else:
            if interval_seconds < MIN_INTERVAL_SECONDS:
                logger.warning(
                    f"Ignoring {ENV_SYNC_INTERVAL_MS}={interval!r}: "
                    f"must be at least {int(MIN_INTERVAL_SECONDS * 1000)}ms"
                )
            else:
                _set_nested(config_dict, "session.sync.interval_seconds", interval_seconds)

    return config_dict


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply CLI argument overrides to config dictionary.

    Keys may be dotted (e.g. "session.sync.dry_run").
    """
    if cli_overrides is None:
        return config_dict

    for key, value in cli_overrides.items():
        if "." in key:
            _set_nested(config_dict, key, value)
        else:
            config_dict[key] = value

    return config_dict


def load_config(
    config_file: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> AppConfig:
    """
    Load configuration with hierarchy: CLI > env > YAML > defaults.

    Args:
        config_file: Path to YAML config file (default: ~/.codemie/config.yaml)
        cli_overrides: Dictionary of CLI argument overrides
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ValueError: If configuration is invalid
    """
    if config_file is None:
        config_file = DEFAULT_CONFIG_FILE

    config_dict = load_yaml(config_file)
    config_dict = apply_env_overrides(config_dict, environ)
    config_dict = apply_cli_overrides(config_dict, cli_overrides)

    try:
        return AppConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_file}"
        ) from e

