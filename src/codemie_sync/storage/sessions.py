"""
Session metadata store.

Each session is one JSON file (``{session_id}.json``) in the sessions
directory. Saves go through a temp file and ``os.replace`` so readers never
observe a half-written session.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

import aiofiles

from codemie_sync.errors import SessionNotFoundError
from codemie_sync.sessions.models import Session
from codemie_sync.utils.paths import (
    METRICS_FILE_SUFFIX,
    SESSION_FILE_SUFFIX,
    get_session_path,
    get_sessions_dir,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """Loads and atomically persists Session metadata files."""

    def __init__(self, sessions_dir: Path | None = None):
        self.sessions_dir = sessions_dir or get_sessions_dir()

    def path_for(self, session_id: str) -> Path:
        return get_session_path(session_id, self.sessions_dir)

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).exists()

    async def load(self, session_id: str) -> Session:
        """
        Load a session.

        Raises:
            SessionNotFoundError: If the session file is missing or unreadable
        """
        path = self.path_for(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)

        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                data = json.loads(await f.read())
            return Session.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to read session file {path}: {e}")
            raise SessionNotFoundError(session_id) from e

    async def save(self, session: Session) -> None:
        """
        Persist a session atomically (write temp file, then rename).

        Raises:
            OSError: If the file cannot be written
        """
        path = self.path_for(session.session_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        content = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
        fd, temp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{session.session_id}_", suffix=".tmp"
        )
        os.close(fd)
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    async def list_sessions(self) -> list[Session]:
        """List all readable sessions, most recent first."""
        if not self.sessions_dir.exists():
            return []

        sessions: list[Session] = []
        for path in self.sessions_dir.glob(f"*{SESSION_FILE_SUFFIX}"):
            if path.name.startswith(".") or path.name.endswith(METRICS_FILE_SUFFIX):
                continue
            session_id = path.name[: -len(SESSION_FILE_SUFFIX)]
            try:
                sessions.append(await self.load(session_id))
            except SessionNotFoundError:
                logger.debug(f"Skipping unreadable session file {path}")

        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions
