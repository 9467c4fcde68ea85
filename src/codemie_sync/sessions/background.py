"""
Background sync orchestrator.

Owns the periodic sync timer for one CodeMie session:
- every interval a sync pass runs unless one is already in flight
- on shutdown the timer is stopped, any in-flight pass is awaited and one
  final pass flushes whatever the session produced since the last tick

Nothing raised by a pass escapes the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping

from codemie_sync.config.app import AppConfig, SessionSyncConfig
from codemie_sync.processors import ProcessingContext
from codemie_sync.sessions.correlation import CorrelationEngine
from codemie_sync.sessions.syncer import SessionSyncer, SyncResult

logger = logging.getLogger(__name__)

ENV_DEV_API_URL = "CODEMIE_DEV_API_URL"
ENV_DEV_API_KEY = "CODEMIE_DEV_API_KEY"

LOG_TAG = "[session-sync]"


class BackgroundSyncOrchestrator:
    """Periodic, single-flight sync of one session."""

    def __init__(
        self,
        session_id: str,
        context: ProcessingContext,
        syncer: SessionSyncer | None = None,
        interval_seconds: float = 120.0,
    ):
        self.session_id = session_id
        self.context = context
        self.syncer = syncer or SessionSyncer()
        self.interval_seconds = interval_seconds

        self._running = False
        self._syncing = False
        self._stopped = False
        self._timer_task: asyncio.Task | None = None
        self._pass_task: asyncio.Task | None = None

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_running(self) -> bool:
        return self._running

    async def on_start(self) -> None:
        """Arm the periodic sync timer (no-op once the orchestrator has stopped)."""
        if self._running or self._stopped:
            return

        self._running = True
        self._timer_task = asyncio.create_task(
            self._timer_loop(),
            name=f"session-sync-{self.session_id}",
        )

        if self.context.dry_run:
            logger.info(f"{LOG_TAG} Dry-run mode enabled, payloads are logged but not sent")
        logger.info(
            f"{LOG_TAG} Session sync enabled, syncing every {self.interval_seconds:g}s "
            f"session_id={self.session_id}"
        )

    async def on_stop(self) -> None:
        """Disarm the timer, wait for an in-flight pass, then run the final flush."""
        if self._stopped:
            logger.debug(f"{LOG_TAG} Session sync already stopped session_id={self.session_id}")
            return
        self._stopped = True
        logger.debug(f"{LOG_TAG} Stopping session sync session_id={self.session_id}")
        self._running = False

        if self._timer_task is not None:
            self._timer_task.cancel()
            await asyncio.gather(self._timer_task, return_exceptions=True)
            self._timer_task = None

        # The in-flight pass is awaited, never cancelled
        if self._pass_task is not None:
            await asyncio.gather(self._pass_task, return_exceptions=True)
            self._pass_task = None

        logger.info(f"{LOG_TAG} sync: phase=final session_id={self.session_id}")
        self._syncing = True
        try:
            result = await self.syncer.sync(self.session_id, self.context)
        except Exception as e:
            logger.error(
                f"{LOG_TAG} sync: phase=final status=error session_id={self.session_id}: {e}",
                exc_info=True,
            )
            return
        finally:
            self._syncing = False

        status = "success" if result.success else "error"
        logger.info(
            f"{LOG_TAG} sync: phase=final status={status} session_id={self.session_id} "
            f"message={result.message!r}"
        )

    async def sync_now(self) -> SyncResult | None:
        """
        Run a pass immediately.

        Returns:
            The pass result, or None if a pass was already in flight (skipped)
        """
        task = self._start_pass()
        if task is None:
            return None
        return await asyncio.shield(task)

    def _start_pass(self) -> asyncio.Task | None:
        if self._syncing:
            logger.debug(f"{LOG_TAG} Sync already in progress, skipping")
            return None
        # Set before the task is scheduled so a second caller sees it
        self._syncing = True
        self._pass_task = asyncio.create_task(
            self._run_pass(), name=f"session-sync-pass-{self.session_id}"
        )
        return self._pass_task

    async def _run_pass(self) -> SyncResult | None:
        try:
            logger.debug(f"{LOG_TAG} Starting sync for session {self.session_id}")
            result = await self.syncer.sync(self.session_id, self.context)
            if result.success:
                logger.info(f"{LOG_TAG} {result.message}")
            else:
                logger.warning(f"{LOG_TAG} Sync had failures: {result.message}")
            return result
        except Exception as e:
            logger.error(f"{LOG_TAG} Sync failed for {self.session_id}: {e}", exc_info=True)
            return None
        finally:
            self._syncing = False

    async def _timer_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

            if not self._running:
                break
            try:
                self._start_pass()
            except Exception as e:
                logger.error(f"{LOG_TAG} Error scheduling sync pass: {e}")


def format_cookie_header(cookies: Mapping[str, str] | str | None) -> str | None:
    """Render a cookie mapping as a Cookie header value."""
    if cookies is None or isinstance(cookies, str):
        return cookies or None
    header = "; ".join(f"{name}={value}" for name, value in cookies.items())
    return header or None


def create_orchestrator(
    config: AppConfig | SessionSyncConfig,
    session_id: str | None,
    base_url: str | None,
    credentials: Mapping[str, str] | str | None,
    client_type: str | None,
    version: str = "0.0.0",
    environ: Mapping[str, str] | None = None,
) -> BackgroundSyncOrchestrator | None:
    """
    Build the orchestrator for a proxy/CLI process.

    Args:
        config: App config (or its session sync section)
        session_id: CodeMie session id
        base_url: Analytics API base URL
        credentials: SSO cookies (mapping or pre-built header value)
        client_type: Client type identifier
        version: Client version
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The orchestrator, or None when sync is disabled for this process
    """
    sync_config = config.get_sync_config() if isinstance(config, AppConfig) else config
    env = os.environ if environ is None else environ

    if not sync_config.enabled:
        logger.debug(f"{LOG_TAG} Skipping: session sync disabled by configuration")
        return None
    if not session_id:
        logger.debug(f"{LOG_TAG} Skipping: session id not available")
        return None
    if not client_type:
        logger.debug(f"{LOG_TAG} Skipping: client type not available")
        return None

    cookies = format_cookie_header(credentials)
    api_key: str | None = None
    dev_url = env.get(ENV_DEV_API_URL)
    dev_key = env.get(ENV_DEV_API_KEY)
    if dev_url and dev_key:
        base_url = dev_url
        api_key = dev_key
        cookies = None
        logger.info(f"{LOG_TAG} Local development mode: using {dev_url} with user-id header")
    elif not cookies:
        logger.debug(f"{LOG_TAG} Skipping: SSO credentials not available")
        return None

    if not base_url:
        logger.debug(f"{LOG_TAG} Skipping: API base URL not available")
        return None

    context = ProcessingContext(
        api_base_url=base_url,
        client_type=client_type,
        version=version,
        cookies=cookies,
        api_key=api_key,
        dry_run=sync_config.dry_run,
        timeout=sync_config.request_timeout_seconds,
        batch_size=sync_config.batch_size,
    )
    syncer = SessionSyncer(
        correlation_engine=CorrelationEngine(
            max_retries=sync_config.correlation_max_retries,
            time_tolerance_seconds=sync_config.correlation_time_tolerance_seconds,
        )
    )
    return BackgroundSyncOrchestrator(
        session_id=session_id,
        context=context,
        syncer=syncer,
        interval_seconds=sync_config.interval_seconds,
    )
