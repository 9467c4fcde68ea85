"""
Sessions package.

This package provides:
- Session data model and its per-processor sync state
- CorrelationEngine: binds a session to the agent's own session log
- SessionSyncer / BackgroundSyncOrchestrator (import from their modules)
"""

from codemie_sync.sessions.models import (
    ConversationsSyncState,
    CorrelationResult,
    MetricsSyncState,
    Session,
    SyncState,
)

__all__ = [
    "ConversationsSyncState",
    "CorrelationResult",
    "MetricsSyncState",
    "Session",
    "SyncState",
]
