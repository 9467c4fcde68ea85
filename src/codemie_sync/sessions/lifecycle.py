"""
Session lifecycle helpers.

Create, end and recover CodeMie session metadata files. Files are never
deleted here; a recovered session keeps its delta log so the next pass can
still flush it.
"""

from __future__ import annotations

import logging
import os
import subprocess  # nosec B404 - subprocess needed for git branch detection
import time
import uuid

from codemie_sync.sessions.models import Session, SessionStatus
from codemie_sync.storage.sessions import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 3600.0


def detect_git_branch(working_directory: str) -> str | None:
    """Current branch of the repository at working_directory, or None."""
    try:
        result = subprocess.run(  # nosec B603 B607 - fixed git command
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=working_directory,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Git branch detection failed in {working_directory}: {e}")
        return None

    branch = result.stdout.strip()
    if result.returncode != 0 or not branch or branch == "HEAD":
        return None
    return branch


class SessionLifecycle:
    """Creates and closes session metadata files."""

    def __init__(self, store: SessionStore | None = None):
        self.store = store or SessionStore()

    async def start_session(
        self,
        agent_name: str,
        provider: str,
        working_directory: str,
        project: str | None = None,
    ) -> Session:
        session = Session(
            session_id=str(uuid.uuid4()),
            agent_name=agent_name,
            provider=provider,
            start_time=int(time.time() * 1000),
            working_directory=working_directory,
            project=project,
            git_branch=detect_git_branch(working_directory),
        )
        await self.store.save(session)
        logger.info(f"Started session {session.session_id} ({agent_name}) in {working_directory}")
        return session

    async def end_session(
        self,
        session_id: str,
        reason: str | None = None,
        status: SessionStatus = "completed",
    ) -> Session:
        """
        Mark a session ended.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self.store.load(session_id)
        session.status = status
        session.end_time = int(time.time() * 1000)
        if reason is not None:
            session.reason = reason
        await self.store.save(session)
        logger.info(f"Ended session {session_id} (status={status}, reason={reason})")
        return session

    async def recover_active_sessions(
        self,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        exclude: set[str] | None = None,
    ) -> list[Session]:
        """
        Mark idle ``active`` sessions as ``recovered``.

        A session is idle when neither it nor its agent log was touched for
        stale_after_seconds, i.e. the process that owned it is gone.

        Args:
            stale_after_seconds: Idle time after which a session is recovered
            exclude: Session ids owned by live processes

        Returns:
            The recovered sessions
        """
        exclude = exclude or set()
        now = time.time()
        recovered: list[Session] = []

        for session in await self.store.list_sessions():
            if session.status != "active" or session.session_id in exclude:
                continue

            last_activity = self._last_activity(session)
            if now - last_activity < stale_after_seconds:
                continue

            session.status = "recovered"
            session.end_time = int(last_activity * 1000)
            session.reason = session.reason or "other"
            await self.store.save(session)
            recovered.append(session)
            logger.info(f"Recovered stale session {session.session_id}")

        return recovered

    def _last_activity(self, session: Session) -> float:
        """Most recent activity in epoch seconds."""
        stamps = [session.start_time / 1000]
        candidates = [str(self.store.path_for(session.session_id))]
        if session.correlation.agent_session_file:
            candidates.append(session.correlation.agent_session_file)
        for path in candidates:
            try:
                stamps.append(os.path.getmtime(path))
            except OSError:
                continue
        return max(stamps)
