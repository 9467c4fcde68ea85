"""
Configuration package for codemie-sync.

Pydantic config models for logging and session sync, plus the
YAML/env/CLI loading helpers.
"""

from codemie_sync.config.app import (
    AppConfig,
    LoggingSettings,
    SessionSettings,
    SessionSyncConfig,
    apply_cli_overrides,
    apply_env_overrides,
    load_config,
)

__all__ = [
    "AppConfig",
    "LoggingSettings",
    "SessionSettings",
    "SessionSyncConfig",
    "apply_cli_overrides",
    "apply_env_overrides",
    "load_config",
]
