"""
Metrics processor.

Parses new usage deltas from the correlated agent log, appends them to the
session's delta log and pushes pending/failed deltas to the analytics API in
batches. Counters in the metrics sync slice are cumulative.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from codemie_sync.adapters import get_adapter
from codemie_sync.adapters.base import MetricsAdapter
from codemie_sync.api.client import AnalyticsApiClient
from codemie_sync.errors import SyncApiError
from codemie_sync.metrics.aggregation import aggregate_deltas
from codemie_sync.metrics.models import MetricDelta
from codemie_sync.processors.base import (
    BaseProcessor,
    ProcessingContext,
    ProcessingResult,
    create_api_client,
)
from codemie_sync.sessions.models import MetricsSyncState, Session
from codemie_sync.storage.deltas import DeltaStore

logger = logging.getLogger(__name__)

# "syncing" is included so records stranded by a crash mid-push are retried
RETRYABLE_STATUSES = ("pending", "failed", "syncing")


class MetricsProcessor(BaseProcessor):
    """Syncs usage metric deltas for a correlated session."""

    name = "metrics"
    priority = 10

    def __init__(
        self,
        adapter_resolver: Callable[[str], MetricsAdapter | None] = get_adapter,
        store_factory: Callable[[str], DeltaStore] = DeltaStore,
        client_factory: Callable[[ProcessingContext], AnalyticsApiClient] = create_api_client,
    ):
        self.adapter_resolver = adapter_resolver
        self.store_factory = store_factory
        self.client_factory = client_factory

    def should_process(self, session: Session) -> bool:
        return (
            session.correlation.status == "matched"
            and session.correlation.agent_session_file is not None
        )

    async def process(self, session: Session, context: ProcessingContext) -> ProcessingResult:
        adapter = self.adapter_resolver(session.agent_name)
        if adapter is None:
            return ProcessingResult(
                success=False, message=f"No metrics adapter for agent '{session.agent_name}'"
            )

        state = session.get_metrics_state()
        store = self.store_factory(session.session_id)

        new_count = await self._collect(session, adapter, store, state)

        to_sync = [d for d in await store.read_all() if d.sync_status in RETRYABLE_STATUSES]
        if not to_sync:
            return ProcessingResult(
                success=True,
                message="No pending deltas",
                metadata={"newDeltas": new_count, "synced": 0, "failed": 0},
            )

        return await self._push(session, context, store, state, to_sync, new_count)

    async def _collect(
        self,
        session: Session,
        adapter: MetricsAdapter,
        store: DeltaStore,
        state: MetricsSyncState,
    ) -> int:
        """Parse and append unseen deltas; returns the number appended."""
        log_file = Path(session.correlation.agent_session_file or "")
        if not log_file.exists():
            logger.warning(f"Agent session log missing for {session.session_id}: {log_file}")
            return 0

        # The delta log is durable before the session file; ids it already
        # holds must not be appended again after a lost session save
        stored_ids = {d.record_id for d in await store.read_all()}
        missing = stored_ids - state.processed_record_ids
        if missing:
            logger.info(
                f"Recovered {len(missing)} processed record ids from the delta log "
                f"for session {session.session_id}"
            )
            state.processed_record_ids.update(missing)
            state.total_deltas = max(state.total_deltas, len(stored_ids))

        result = await adapter.parse_incremental_metrics(
            log_file,
            set(state.processed_record_ids),
            state.attached_user_prompt_texts,
        )

        new_deltas: list[MetricDelta] = []
        seen: set[str] = set()
        for delta in result.deltas:
            if delta.record_id in state.processed_record_ids or delta.record_id in seen:
                continue
            seen.add(delta.record_id)
            delta.session_id = session.session_id
            if not delta.agent_session_id:
                delta.agent_session_id = session.correlation.agent_session_id or ""
            new_deltas.append(delta)

        # Appending first: ids are only marked processed once they are durable
        await store.append_deltas(new_deltas)

        state.processed_record_ids.update(seen)
        state.total_deltas += len(new_deltas)
        if result.last_line is not None:
            state.last_processed_line = result.last_line
        if result.attached_prompts:
            state.attached_user_prompt_texts = list(result.attached_prompts)
        state.last_processed_timestamp = int(time.time() * 1000)

        if new_deltas:
            logger.debug(f"Stored {len(new_deltas)} new deltas for session {session.session_id}")
        return len(new_deltas)

    def _build_payload(
        self, session: Session, context: ProcessingContext, batch: list[MetricDelta]
    ) -> dict[str, Any]:
        metrics = aggregate_deltas(
            batch,
            agent=session.agent_name,
            agent_version=context.version,
            session_id=session.session_id,
            repository=session.working_directory,
            project=session.project,
        )
        return {
            "sessionId": session.session_id,
            "agentSessionId": session.correlation.agent_session_id,
            "provider": session.provider,
            "recordIds": [d.record_id for d in batch],
            "metrics": [m.to_dict() for m in metrics],
        }

    async def _push(
        self,
        session: Session,
        context: ProcessingContext,
        store: DeltaStore,
        state: MetricsSyncState,
        to_sync: list[MetricDelta],
        new_count: int,
    ) -> ProcessingResult:
        client = self.client_factory(context)
        batch_size = max(1, context.batch_size)
        synced = failed = 0
        error: str | None = None

        for start in range(0, len(to_sync), batch_size):
            batch = to_sync[start : start + batch_size]
            record_ids = [d.record_id for d in batch]
            payload = self._build_payload(session, context, batch)

            if context.dry_run:
                logger.info(
                    f"[dry-run] Would send {len(batch)} deltas for session "
                    f"{session.session_id}: {json.dumps(payload, default=str)}"
                )
                continue

            await store.update_status(record_ids, "syncing")
            try:
                await client.post_metrics(payload)
            except SyncApiError as e:
                error = str(e)
                await store.update_status(
                    record_ids, "failed", increment_attempts=True, error=error
                )
                failed += len(batch)
                state.total_failed += len(batch)
                state.last_sync_error = error
                logger.warning(
                    f"Failed to sync {len(batch)} deltas for session {session.session_id}: {error}"
                )
                # Endpoint is unhealthy; remaining batches wait for the next pass
                break

            await store.update_status(record_ids, "synced")
            synced += len(batch)
            state.total_synced += len(batch)
            state.last_synced_record_id = record_ids[-1]
            state.last_sync_at = int(time.time() * 1000)
            state.last_sync_error = None

        metadata = {
            "newDeltas": new_count,
            "synced": synced,
            "failed": failed,
            "dryRun": context.dry_run,
        }
        if context.dry_run:
            return ProcessingResult(
                success=True,
                message=f"Dry run: {len(to_sync)} deltas logged, not sent",
                metadata=metadata,
            )
        if error is not None:
            return ProcessingResult(
                success=False,
                message=f"Synced {synced} deltas, {failed} failed: {error}",
                metadata=metadata,
            )
        return ProcessingResult(success=True, message=f"Synced {synced} deltas", metadata=metadata)
