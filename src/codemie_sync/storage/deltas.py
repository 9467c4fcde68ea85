"""
Append-only delta log.

One JSONL file per session (``{session_id}_metrics.jsonl``). New deltas are
appended as single newline-terminated lines; status changes rewrite the file
atomically (temp file + os.replace) so a crash leaves either the old or the
new content, never a mix.

A crash in the middle of an append can leave a partial final line. Readers
skip unparseable lines, and the next append starts on a fresh line, so the
partial record is simply treated as never committed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Iterable
from pathlib import Path

import aiofiles

from codemie_sync.errors import DeltaStoreError
from codemie_sync.metrics.models import SYNC_STATUSES, MetricDelta, SyncStats, SyncStatus
from codemie_sync.utils.paths import get_metrics_path

logger = logging.getLogger(__name__)


class DeltaStore:
    """
    Durable per-session log of MetricDelta records.

    The store is the only writer of its file. It is not safe for use by
    several processes at once.
    """

    def __init__(self, session_id: str, sessions_dir: Path | None = None):
        """
        Initialize DeltaStore.

        Args:
            session_id: CodeMie session ID the log belongs to
            sessions_dir: Directory holding session files (default: ~/.codemie/sessions)
        """
        self.session_id = session_id
        self.file_path = get_metrics_path(session_id, sessions_dir)

    def exists(self) -> bool:
        return self.file_path.exists()

    async def append_delta(self, delta: MetricDelta) -> None:
        """
        Append a new delta as pending.

        Raises:
            DeltaStoreError: If the record cannot be written
        """
        delta.sync_status = "pending"
        delta.sync_attempts = 0
        await self.append_deltas([delta])

    async def append_deltas(self, deltas: list[MetricDelta]) -> None:
        """
        Append several new deltas in one write, each as pending.

        Raises:
            DeltaStoreError: If the records cannot be written
        """
        if not deltas:
            return

        for delta in deltas:
            delta.sync_status = "pending"
            delta.sync_attempts = 0

        payload = "".join(json.dumps(d.to_dict(), ensure_ascii=False) + "\n" for d in deltas)

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            if await self._has_partial_tail():
                payload = "\n" + payload
            async with aiofiles.open(self.file_path, "a", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
        except OSError as e:
            logger.error(f"Failed to append {len(deltas)} deltas to {self.file_path}: {e}")
            raise DeltaStoreError(f"Failed to append to delta log {self.file_path}: {e}") from e

        logger.debug(f"Appended {len(deltas)} deltas for session {self.session_id}")

    async def _has_partial_tail(self) -> bool:
        """True if the file's last byte is not a newline (interrupted append)."""
        if not self.file_path.exists() or self.file_path.stat().st_size == 0:
            return False
        async with aiofiles.open(self.file_path, "rb") as f:
            await f.seek(-1, os.SEEK_END)
            last = await f.read(1)
        return last != b"\n"

    async def read_all(self) -> list[MetricDelta]:
        """
        Read every committed delta.

        Malformed lines are skipped. If the same record id appears more than
        once the last occurrence wins, keeping the first position.
        """
        if not self.exists():
            return []

        try:
            async with aiofiles.open(self.file_path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            logger.error(f"Error reading delta log {self.file_path}: {e}")
            return []

        records: dict[str, MetricDelta] = {}
        lines = content.split("\n")
        for line_num, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                delta = MetricDelta.from_dict(data)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
                if line_num == len(lines):
                    logger.debug(f"Ignoring uncommitted trailing line in {self.file_path}")
                else:
                    logger.warning(f"Skipping malformed delta at line {line_num} of {self.file_path}")
                continue
            records[delta.record_id] = delta

        return list(records.values())

    async def filter_by_status(self, status: SyncStatus) -> list[MetricDelta]:
        return [d for d in await self.read_all() if d.sync_status == status]

    async def get_sync_stats(self) -> SyncStats:
        stats = SyncStats()
        for delta in await self.read_all():
            stats.total += 1
            if delta.sync_status in SYNC_STATUSES:
                setattr(stats, delta.sync_status, getattr(stats, delta.sync_status) + 1)
        return stats

    async def update_status(
        self,
        record_ids: Iterable[str],
        status: SyncStatus,
        *,
        increment_attempts: bool = False,
        error: str | None = None,
    ) -> int:
        """
        Set the sync status of the given records.

        Args:
            record_ids: Records to update
            status: New sync status
            increment_attempts: Increment syncAttempts of each updated record
            error: Error message stored on failed records

        Returns:
            Number of records updated

        Raises:
            DeltaStoreError: If the log cannot be rewritten
        """
        wanted = set(record_ids)
        if not wanted:
            return 0

        deltas = await self.read_all()
        now_ms = int(time.time() * 1000)
        updated = 0
        for delta in deltas:
            if delta.record_id not in wanted:
                continue
            delta.sync_status = status
            if increment_attempts:
                delta.sync_attempts += 1
            if status == "synced":
                delta.synced_at = now_ms
                delta.last_sync_error = None
            elif status == "failed":
                delta.last_sync_error = error
            updated += 1

        if updated:
            await self._rewrite(deltas)
        return updated

    async def _rewrite(self, deltas: list[MetricDelta]) -> None:
        content = "".join(json.dumps(d.to_dict(), ensure_ascii=False) + "\n" for d in deltas)
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=str(self.file_path.parent), prefix=f".{self.session_id}_", suffix=".tmp"
            )
            os.close(fd)
            try:
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(content)
                    await f.flush()
                os.replace(temp_path, self.file_path)
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to rewrite delta log {self.file_path}: {e}")
            raise DeltaStoreError(f"Failed to rewrite delta log {self.file_path}: {e}") from e
