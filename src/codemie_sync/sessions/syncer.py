"""
Session syncer.

Runs one sync pass for a session: load it, correlate it if needed, run every
applicable processor in priority order, then persist the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from codemie_sync.errors import SessionNotFoundError
from codemie_sync.processors import BaseProcessor, ProcessingContext, ProcessingResult
from codemie_sync.processors import default_processors
from codemie_sync.sessions.correlation import CorrelationEngine
from codemie_sync.storage.sessions import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: bool
    message: str
    processors: dict[str, ProcessingResult] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "processors": {name: r.to_dict() for name, r in self.processors.items()},
        }


class SessionSyncer:
    """
    Runs sync passes for sessions stored on disk.

    A processor failure, returned or raised, is recorded in that processor's
    result and never prevents the remaining processors from running.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        processors: list[BaseProcessor] | None = None,
        correlation_engine: CorrelationEngine | None = None,
    ):
        self.store = store or SessionStore()
        self.processors = sorted(
            processors if processors is not None else default_processors(),
            key=lambda p: p.priority,
        )
        self.correlation_engine = correlation_engine or CorrelationEngine()

    async def sync(self, session_id: str, context: ProcessingContext) -> SyncResult:
        """
        Run one sync pass.

        Args:
            session_id: CodeMie session id
            context: Connection and mode settings

        Returns:
            SyncResult summarising the pass (never raises for a missing session)
        """
        try:
            session = await self.store.load(session_id)
        except SessionNotFoundError as e:
            logger.warning(f"[session-sync] {e}")
            return SyncResult(success=False, message=str(e))

        if session.correlation.status != "matched":
            if session.correlation.status == "pending":
                await self.correlation_engine.correlate(session)
                await self.store.save(session)
            if session.correlation.status != "matched":
                status = session.correlation.status
                message = (
                    f"Session not correlated (status={status}, "
                    f"attempts={session.correlation.retry_count})"
                )
                logger.debug(f"[session-sync] {message} session_id={session_id}")
                return SyncResult(success=False, message=message)

        results: dict[str, ProcessingResult] = {}
        for processor in self.processors:
            if not processor.should_process(session):
                continue
            try:
                results[processor.name] = await processor.process(session, context)
            except Exception as e:
                logger.error(
                    f"[session-sync] Processor {processor.name} failed for {session_id}: {e}",
                    exc_info=True,
                )
                results[processor.name] = ProcessingResult(success=False, message=str(e))

        await self.store.save(session)

        failed = [name for name, r in results.items() if not r.success]
        if failed:
            message = f"Processors failed: {', '.join(failed)}"
        else:
            message = f"Ran {len(results)} processors"
        logger.debug(f"[session-sync] {message} session_id={session_id}")
        return SyncResult(success=not failed, message=message, processors=results)
