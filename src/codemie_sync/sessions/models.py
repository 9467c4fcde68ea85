"""Session data model.

Contains the Session dataclass, its correlation result and the per-processor
sync state slices, plus their (camelCase) JSON serialization helpers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

logger = logging.getLogger(__name__)

CorrelationStatus = Literal["pending", "matched", "failed"]
SessionStatus = Literal["active", "completed", "recovered", "failed"]

CORRELATION_STATUSES: tuple[str, ...] = ("pending", "matched", "failed")
SESSION_STATUSES: tuple[str, ...] = ("active", "completed", "recovered", "failed")


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class CorrelationResult:
    """Binding between a session and the external agent's session log."""

    status: CorrelationStatus = "pending"
    agent_session_file: str | None = None
    agent_session_id: str | None = None
    detected_at: int | None = None  # Unix timestamp (ms)
    retry_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in ("matched", "failed")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CorrelationResult:
        data = data or {}
        status = data.get("status", "pending")
        if status not in CORRELATION_STATUSES:
            logger.warning(f"Unknown correlation status '{status}', treating as pending")
            status = "pending"
        return cls(
            status=status,
            agent_session_file=data.get("agentSessionFile"),
            agent_session_id=data.get("agentSessionId"),
            detected_at=data.get("detectedAt"),
            retry_count=int(data.get("retryCount") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "status": self.status,
                "agentSessionFile": self.agent_session_file,
                "agentSessionId": self.agent_session_id,
                "detectedAt": self.detected_at,
                "retryCount": self.retry_count,
            }
        )


@dataclass
class MetricsSyncState:
    """Sync state owned by the metrics processor.

    The totals are cumulative historical counters and never decrease.
    ``processed_record_ids`` only ever grows.
    """

    last_processed_timestamp: int = 0
    processed_record_ids: set[str] = field(default_factory=set)
    last_processed_line: int | None = None
    attached_user_prompt_texts: list[str] | None = None
    last_synced_record_id: str | None = None
    last_sync_at: int | None = None
    total_deltas: int = 0
    total_synced: int = 0
    total_failed: int = 0
    last_sync_error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MetricsSyncState:
        data = data or {}
        return cls(
            last_processed_timestamp=int(data.get("lastProcessedTimestamp") or 0),
            processed_record_ids=set(data.get("processedRecordIds") or []),
            last_processed_line=data.get("lastProcessedLine"),
            attached_user_prompt_texts=data.get("attachedUserPromptTexts"),
            last_synced_record_id=data.get("lastSyncedRecordId"),
            last_sync_at=data.get("lastSyncAt"),
            total_deltas=int(data.get("totalDeltas") or 0),
            total_synced=int(data.get("totalSynced") or 0),
            total_failed=int(data.get("totalFailed") or 0),
            last_sync_error=data.get("lastSyncError"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "lastProcessedLine": self.last_processed_line,
                "lastProcessedTimestamp": self.last_processed_timestamp,
                # Sorted so that rewrites of unchanged state are byte-identical
                "processedRecordIds": sorted(self.processed_record_ids),
                "attachedUserPromptTexts": self.attached_user_prompt_texts,
                "lastSyncedRecordId": self.last_synced_record_id,
                "lastSyncAt": self.last_sync_at,
                "totalDeltas": self.total_deltas,
                "totalSynced": self.total_synced,
                "totalFailed": self.total_failed,
                "lastSyncError": self.last_sync_error,
            }
        )


@dataclass
class ConversationsSyncState:
    """Sync state owned by the conversations processor."""

    conversation_id: str | None = None
    last_synced_message_uuid: str | None = None
    last_synced_history_index: int = -1
    last_sync_at: int | None = None
    total_messages_synced: int = 0
    total_sync_attempts: int = 0
    last_sync_error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConversationsSyncState:
        data = data or {}
        index = data.get("lastSyncedHistoryIndex")
        return cls(
            conversation_id=data.get("conversationId"),
            last_synced_message_uuid=data.get("lastSyncedMessageUuid"),
            last_synced_history_index=-1 if index is None else int(index),
            last_sync_at=data.get("lastSyncAt"),
            total_messages_synced=int(data.get("totalMessagesSynced") or 0),
            total_sync_attempts=int(data.get("totalSyncAttempts") or 0),
            last_sync_error=data.get("lastSyncError"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "conversationId": self.conversation_id,
                "lastSyncedMessageUuid": self.last_synced_message_uuid,
                "lastSyncedHistoryIndex": self.last_synced_history_index,
                "lastSyncAt": self.last_sync_at,
                "totalMessagesSynced": self.total_messages_synced,
                "totalSyncAttempts": self.total_sync_attempts,
                "lastSyncError": self.last_sync_error,
            }
        )


@dataclass
class SyncState:
    """Per-processor sync state sections.

    Sections for processors this version does not know about are kept in
    ``extra`` and written back untouched.
    """

    metrics: MetricsSyncState | None = None
    conversations: ConversationsSyncState | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SyncState:
        data = dict(data or {})
        metrics = data.pop("metrics", None)
        conversations = data.pop("conversations", None)
        return cls(
            metrics=MetricsSyncState.from_dict(metrics) if metrics is not None else None,
            conversations=(
                ConversationsSyncState.from_dict(conversations)
                if conversations is not None
                else None
            ),
            extra=data,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.extra)
        if self.metrics is not None:
            result["metrics"] = self.metrics.to_dict()
        if self.conversations is not None:
            result["conversations"] = self.conversations.to_dict()
        return result


@dataclass
class Session:
    """One local record of a CLI-driven run of an external coding agent."""

    session_id: str
    agent_name: str
    provider: str
    start_time: int  # Unix timestamp (ms)
    working_directory: str
    correlation: CorrelationResult = field(default_factory=CorrelationResult)
    status: SessionStatus = "active"
    project: str | None = None
    end_time: int | None = None  # Unix timestamp (ms)
    git_branch: str | None = None
    reason: str | None = None  # e.g. 'clear', 'logout', 'prompt_input_exit', 'other'
    sync: SyncState | None = None

    def get_metrics_state(self) -> MetricsSyncState:
        """Return the metrics slice, creating it on first use."""
        if self.sync is None:
            self.sync = SyncState()
        if self.sync.metrics is None:
            self.sync.metrics = MetricsSyncState()
        return self.sync.metrics

    def get_conversations_state(self) -> ConversationsSyncState:
        """Return the conversations slice, creating it on first use."""
        if self.sync is None:
            self.sync = SyncState()
        if self.sync.conversations is None:
            self.sync.conversations = ConversationsSyncState()
        return self.sync.conversations

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Create Session from its on-disk JSON representation.

        Raises:
            KeyError: If a required field is missing
        """
        status = data.get("status", "active")
        if status not in SESSION_STATUSES:
            logger.warning(f"Unknown session status '{status}', treating as active")
            status = "active"
        sync = data.get("sync")
        return cls(
            session_id=data["sessionId"],
            agent_name=data["agentName"],
            provider=data.get("provider", ""),
            start_time=int(data["startTime"]),
            working_directory=data.get("workingDirectory", ""),
            correlation=CorrelationResult.from_dict(data.get("correlation")),
            status=status,
            project=data.get("project"),
            end_time=data.get("endTime"),
            git_branch=data.get("gitBranch"),
            reason=data.get("reason"),
            sync=SyncState.from_dict(sync) if sync is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk JSON representation."""
        return _drop_none(
            {
                "sessionId": self.session_id,
                "agentName": self.agent_name,
                "provider": self.provider,
                "project": self.project,
                "startTime": self.start_time,
                "endTime": self.end_time,
                "workingDirectory": self.working_directory,
                "gitBranch": self.git_branch,
                "correlation": self.correlation.to_dict(),
                "status": self.status,
                "reason": self.reason,
                "sync": self.sync.to_dict() if self.sync is not None else None,
            }
        )
