"""
Exception hierarchy for the session sync engine.
"""

from __future__ import annotations


class SessionSyncError(Exception):
    """Base class for all session sync errors."""


class SessionNotFoundError(SessionSyncError):
    """Raised when a session metadata file does not exist."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class DeltaStoreError(SessionSyncError):
    """Raised when the delta log cannot be written."""


class SyncApiError(SessionSyncError):
    """Raised when the remote analytics API rejects a request or is unreachable."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(SessionSyncError):
    """Raised when sync configuration or credentials are missing or invalid."""
