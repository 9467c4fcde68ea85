"""
Filesystem layout for session metadata and delta logs.
"""

import os
from pathlib import Path

SESSION_FILE_SUFFIX = ".json"
METRICS_FILE_SUFFIX = "_metrics.jsonl"


def get_codemie_home() -> Path:
    """Get codemie home directory, respecting CODEMIE_HOME env var.

    Returns:
        Path to codemie home (~/.codemie by default, or CODEMIE_HOME if set)
    """
    codemie_home = os.environ.get("CODEMIE_HOME")
    if codemie_home:
        return Path(codemie_home).expanduser()
    return Path.home() / ".codemie"


def get_sessions_dir() -> Path:
    """Directory holding session metadata files and their delta logs."""
    return get_codemie_home() / "sessions"


def get_session_path(session_id: str, sessions_dir: Path | None = None) -> Path:
    return (sessions_dir or get_sessions_dir()) / f"{session_id}{SESSION_FILE_SUFFIX}"


def get_metrics_path(session_id: str, sessions_dir: Path | None = None) -> Path:
    return (sessions_dir or get_sessions_dir()) / f"{session_id}{METRICS_FILE_SUFFIX}"


def normalize_path(path: str) -> str:
    """Normalize a path for comparison (separators, trailing slash, ~)."""
    if not path:
        return ""
    expanded = os.path.expanduser(path.strip()).replace("\\", "/")
    normalized = os.path.normpath(expanded).replace("\\", "/")
    return normalized.rstrip("/") or "/"
