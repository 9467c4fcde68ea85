"""
Metrics adapter protocol.

Defines the contract between the sync engine and each external agent's
on-disk session log format. Adapters are registered by agent name in
``codemie_sync.adapters``; the core never branches on agent type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from codemie_sync.metrics.models import MetricDelta

logger = logging.getLogger(__name__)


@dataclass
class AgentSessionInfo:
    """Identity of an agent session log, read from its embedded header records."""

    agent_session_id: str
    file_path: Path
    start_time: datetime | None
    working_directory: str | None


@dataclass
class IncrementalResult:
    """Output of one incremental parse.

    Attributes:
        deltas: New deltas (never containing an already processed record id)
        new_processed_ids: Record ids emitted by this call
        last_line: Last line number read (resume hint only)
        attached_prompts: User prompt texts attached to deltas so far
    """

    deltas: list[MetricDelta] = field(default_factory=list)
    new_processed_ids: set[str] = field(default_factory=set)
    last_line: int | None = None
    attached_prompts: list[str] = field(default_factory=list)


@dataclass
class ConversationMessage:
    """A single user or assistant message from an agent session log."""

    uuid: str
    role: str
    content: str
    timestamp: str
    model: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "uuid": self.uuid,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "model": self.model,
        }


@runtime_checkable
class MetricsAdapter(Protocol):
    """
    Protocol for per-agent metrics adapters.

    parse_incremental_metrics must be deterministic and idempotent: called
    twice with the same file content and the same already_processed_ids, the
    second call returns no deltas. Malformed lines (including a partially
    written last line) are skipped, never fatal.
    """

    agent_name: str

    @property
    def sessions_dir(self) -> Path:
        """Directory the agent writes its session logs to."""
        ...

    def list_session_files(self, working_directory: str | None = None) -> list[Path]:
        """
        List candidate session log files for correlation.

        Args:
            working_directory: Optional hint to narrow the search

        Returns:
            Main session log files (sidechain/sub-agent files excluded)
        """
        ...

    def read_session_info(self, path: Path) -> AgentSessionInfo | None:
        """
        Read the agent session id, start time and working directory of a log.

        Returns:
            AgentSessionInfo, or None if the file carries no usable header
        """
        ...

    def related_session_files(self, path: Path) -> list[Path]:
        """
        Additional log files belonging to the same agent session (sub-agents).
        """
        ...

    async def parse_incremental_metrics(
        self,
        log_file_path: Path,
        already_processed_ids: set[str],
        attached_prompts: list[str] | None = None,
    ) -> IncrementalResult:
        """
        Parse new deltas from a session log.

        Args:
            log_file_path: Agent session log
            already_processed_ids: Record ids emitted by earlier calls
            attached_prompts: User prompt texts already attached to earlier deltas

        Returns:
            IncrementalResult with only unseen records
        """
        ...


@runtime_checkable
class ConversationAdapter(Protocol):
    """Optional adapter capability used by the conversations processor."""

    def parse_conversation(self, path: Path) -> list[ConversationMessage]:
        """Return the ordered user/assistant messages of a session log."""
        ...
