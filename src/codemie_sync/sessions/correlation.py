"""
Session correlation.

Binds a CodeMie session to the external agent's own session log by matching
the log's embedded working directory and start time against the session.

Status transitions are pending -> matched and pending -> failed only; both
targets are terminal and a terminal session is never re-correlated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from codemie_sync.adapters import get_adapter
from codemie_sync.adapters.base import AgentSessionInfo, MetricsAdapter
from codemie_sync.sessions.models import CorrelationResult, Session
from codemie_sync.utils.paths import normalize_path

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_TIME_TOLERANCE_SECONDS = 300.0


class CorrelationEngine:
    """Matches pending sessions to agent session log files."""

    def __init__(
        self,
        adapter_resolver: Callable[[str], MetricsAdapter | None] = get_adapter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        time_tolerance_seconds: float = DEFAULT_TIME_TOLERANCE_SECONDS,
    ):
        """
        Initialize CorrelationEngine.

        Args:
            adapter_resolver: Returns the adapter for an agent name
            max_retries: Failed attempts after which correlation becomes failed
            time_tolerance_seconds: Allowed distance outside the session's
                [start, end] window for the log's start time
        """
        self.adapter_resolver = adapter_resolver
        self.max_retries = max_retries
        self.time_tolerance_seconds = time_tolerance_seconds

    async def correlate(self, session: Session) -> CorrelationResult:
        """
        Attempt to correlate a session, updating ``session.correlation`` in place.

        Returns:
            The session's (possibly updated) CorrelationResult
        """
        correlation = session.correlation
        if correlation.is_terminal:
            return correlation

        adapter = self.adapter_resolver(session.agent_name)
        match: AgentSessionInfo | None = None
        if adapter is None:
            logger.warning(f"No metrics adapter registered for agent '{session.agent_name}'")
        else:
            try:
                match = await asyncio.to_thread(self._find_match, adapter, session)
            except OSError as e:
                logger.warning(f"Correlation scan failed for session {session.session_id}: {e}")

        if match is not None:
            correlation.status = "matched"
            correlation.agent_session_file = str(match.file_path)
            correlation.agent_session_id = match.agent_session_id
            correlation.detected_at = int(time.time() * 1000)
            logger.info(
                f"Correlated session {session.session_id} with agent session "
                f"{match.agent_session_id} ({match.file_path})"
            )
            return correlation

        correlation.retry_count += 1
        if correlation.retry_count >= self.max_retries:
            correlation.status = "failed"
            logger.warning(
                f"Correlation failed for session {session.session_id} after "
                f"{correlation.retry_count} attempts; metrics collection stopped"
            )
        else:
            logger.debug(
                f"No agent session log for {session.session_id} yet "
                f"(attempt {correlation.retry_count}/{self.max_retries})"
            )
        return correlation

    def _find_match(self, adapter: MetricsAdapter, session: Session) -> AgentSessionInfo | None:
        session_cwd = normalize_path(session.working_directory)
        window_start = session.start_time / 1000 - self.time_tolerance_seconds
        end_ms = session.end_time if session.end_time is not None else time.time() * 1000
        window_end = end_ms / 1000 + self.time_tolerance_seconds

        candidates: list[tuple[float, AgentSessionInfo]] = []
        for path in adapter.list_session_files(session.working_directory):
            info = adapter.read_session_info(path)
            if info is None or info.start_time is None or not info.working_directory:
                continue
            if normalize_path(info.working_directory) != session_cwd:
                continue

            started = _to_epoch_seconds(info.start_time)
            if not window_start <= started <= window_end:
                continue
            candidates.append((abs(started - session.start_time / 1000), info))

        if not candidates:
            return None

        candidates.sort(key=lambda c: c[0])
        if len(candidates) > 1 and candidates[0][0] == candidates[1][0]:
            logger.warning(
                f"Ambiguous correlation for session {session.session_id}: "
                f"{len(candidates)} equally close agent logs"
            )
            return None
        return candidates[0][1]


def _to_epoch_seconds(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()
