"""Metric delta data model.

A MetricDelta is one unit of agent activity (one assistant turn) extracted
from the agent's session log. Deltas are stored one JSON object per line in
the session's delta log using camelCase keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

SyncStatus = Literal["pending", "syncing", "synced", "failed"]
SYNC_STATUSES: tuple[str, ...] = ("pending", "syncing", "synced", "failed")

FileOperationType = Literal["read", "write", "edit", "delete"]


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class TokenUsage:
    """Token counts for a single turn."""

    input: int = 0
    output: int = 0
    cache_creation: int | None = None
    cache_read: int | None = None
    thoughts: int | None = None
    reasoning: int | None = None
    tool: int | None = None

    @property
    def total(self) -> int:
        return (
            self.input
            + self.output
            + (self.cache_creation or 0)
            + (self.cache_read or 0)
            + (self.thoughts or 0)
            + (self.reasoning or 0)
            + (self.tool or 0)
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TokenUsage:
        data = data or {}
        return cls(
            input=int(data.get("input") or 0),
            output=int(data.get("output") or 0),
            cache_creation=data.get("cacheCreation"),
            cache_read=data.get("cacheRead"),
            thoughts=data.get("thoughts"),
            reasoning=data.get("reasoning"),
            tool=data.get("tool"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "input": self.input,
                "output": self.output,
                "cacheCreation": self.cache_creation,
                "cacheRead": self.cache_read,
                "thoughts": self.thoughts,
                "reasoning": self.reasoning,
                "tool": self.tool,
            }
        )


@dataclass
class ToolStatus:
    success: int = 0
    failure: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"success": self.success, "failure": self.failure}


@dataclass
class FileOperation:
    """A file touched by a tool call in one turn."""

    type: FileOperationType
    path: str
    lines_added: int | None = None
    lines_removed: int | None = None
    format: str | None = None
    language: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileOperation:
        return cls(
            type=data["type"],
            path=data.get("path", ""),
            lines_added=data.get("linesAdded"),
            lines_removed=data.get("linesRemoved"),
            format=data.get("format"),
            language=data.get("language"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "type": self.type,
                "path": self.path,
                "linesAdded": self.lines_added,
                "linesRemoved": self.lines_removed,
                "format": self.format,
                "language": self.language,
            }
        )


def _tool_errors_from(data: Any) -> dict[str, list[str]] | None:
    if not isinstance(data, dict):
        return None
    errors = {
        str(name): [str(m) for m in messages]
        for name, messages in data.items()
        if isinstance(messages, list) and messages
    }
    return errors or None


@dataclass
class MetricDelta:
    """One incremental usage record with its sync lifecycle."""

    record_id: str
    session_id: str
    agent_session_id: str
    timestamp: str  # ISO-8601
    tokens: TokenUsage = field(default_factory=TokenUsage)
    models: list[str] = field(default_factory=list)
    tools: dict[str, int] | None = None
    tool_status: dict[str, ToolStatus] | None = None
    tool_errors: dict[str, list[str]] | None = None
    file_operations: list[FileOperation] | None = None
    git_branch: str | None = None
    user_prompts: list[str] | None = None
    api_error_message: str | None = None
    sync_status: SyncStatus = "pending"
    sync_attempts: int = 0
    synced_at: int | None = None
    last_sync_error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetricDelta:
        """Create a delta from a parsed JSON line.

        Raises:
            KeyError: If recordId is missing
        """
        tool_status = data.get("toolStatus")
        file_operations = data.get("fileOperations")
        status = data.get("syncStatus", "pending")
        return cls(
            record_id=data["recordId"],
            session_id=data.get("sessionId", ""),
            agent_session_id=data.get("agentSessionId", ""),
            timestamp=data.get("timestamp", ""),
            tokens=TokenUsage.from_dict(data.get("tokens")),
            models=list(data.get("models") or []),
            tools=data.get("tools"),
            tool_status=(
                {
                    name: ToolStatus(
                        success=int(s.get("success", 0)), failure=int(s.get("failure", 0))
                    )
                    for name, s in tool_status.items()
                }
                if tool_status
                else None
            ),
            tool_errors=_tool_errors_from(data.get("toolErrors")),
            file_operations=(
                [FileOperation.from_dict(op) for op in file_operations]
                if file_operations
                else None
            ),
            git_branch=data.get("gitBranch"),
            user_prompts=data.get("userPrompts"),
            api_error_message=data.get("apiErrorMessage"),
            sync_status=status if status in SYNC_STATUSES else "pending",
            sync_attempts=int(data.get("syncAttempts") or 0),
            synced_at=data.get("syncedAt"),
            last_sync_error=data.get("lastSyncError"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "recordId": self.record_id,
                "sessionId": self.session_id,
                "agentSessionId": self.agent_session_id,
                "timestamp": self.timestamp,
                "tokens": self.tokens.to_dict(),
                "models": list(self.models),
                "tools": dict(self.tools) if self.tools else None,
                "toolStatus": (
                    {name: s.to_dict() for name, s in self.tool_status.items()}
                    if self.tool_status
                    else None
                ),
                "toolErrors": (
                    {name: list(errors) for name, errors in self.tool_errors.items()}
                    if self.tool_errors
                    else None
                ),
                "fileOperations": (
                    [op.to_dict() for op in self.file_operations]
                    if self.file_operations
                    else None
                ),
                "gitBranch": self.git_branch,
                "userPrompts": self.user_prompts,
                "apiErrorMessage": self.api_error_message,
                "syncStatus": self.sync_status,
                "syncAttempts": self.sync_attempts,
                "syncedAt": self.synced_at,
                "lastSyncError": self.last_sync_error,
            }
        )


@dataclass
class SyncStats:
    total: int = 0
    pending: int = 0
    syncing: int = 0
    synced: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "syncing": self.syncing,
            "synced": self.synced,
            "failed": self.failed,
        }
