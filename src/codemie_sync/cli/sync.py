"""
Sync CLI commands: one-shot sync, delta statistics and the background watcher.
"""

import asyncio
import json

import click

from codemie_sync import __version__
from codemie_sync.config.app import AppConfig
from codemie_sync.errors import ConfigurationError
from codemie_sync.sessions.background import BackgroundSyncOrchestrator
from codemie_sync.sessions.correlation import CorrelationEngine
from codemie_sync.sessions.syncer import SessionSyncer
from codemie_sync.storage.deltas import DeltaStore

from .utils import DEFAULT_CLIENT_TYPE, build_context, get_session_store, resolve_session_id


def _connection_options(func):
    """Options shared by commands that talk to the analytics API."""
    options = [
        click.option("--base-url", envvar="CODEMIE_API_URL", help="Analytics API base URL"),
        click.option("--cookies", envvar="CODEMIE_COOKIES", help="SSO Cookie header value"),
        click.option("--api-key", envvar="CODEMIE_DEV_API_KEY", help="API key (local development)"),
        click.option("--client-type", default=DEFAULT_CLIENT_TYPE, help="Client type identifier"),
        click.option("--dry-run/--no-dry-run", default=None, help="Log payloads instead of sending"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _make_syncer(config: AppConfig) -> SessionSyncer:
    sync_config = config.get_sync_config()
    return SessionSyncer(
        store=get_session_store(),
        correlation_engine=CorrelationEngine(
            max_retries=sync_config.correlation_max_retries,
            time_tolerance_seconds=sync_config.correlation_time_tolerance_seconds,
        ),
    )


@click.command("sync")
@click.argument("session_id")
@_connection_options
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def sync_session(
    ctx: click.Context,
    session_id: str,
    base_url: str | None,
    cookies: str | None,
    api_key: str | None,
    client_type: str,
    dry_run: bool | None,
    json_format: bool,
) -> None:
    """Run one sync pass for a session."""
    config: AppConfig = ctx.obj["config"]
    session_id = resolve_session_id(get_session_store(), session_id)

    try:
        context = build_context(
            config, base_url, cookies, api_key, client_type, __version__, dry_run
        )
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from None

    result = asyncio.run(_make_syncer(config).sync(session_id, context))

    if json_format:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        icon = "✓" if result.success else "✗"
        click.echo(f"{icon} {result.message}")
        for name, processor_result in result.processors.items():
            click.echo(f"  {name}: {processor_result.message}")

    if not result.success:
        raise SystemExit(1)


@click.command("stats")
@click.argument("session_id")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
def stats(session_id: str, json_format: bool) -> None:
    """Show delta sync statistics for a session."""
    store = get_session_store()
    session_id = resolve_session_id(store, session_id)
    sync_stats = asyncio.run(DeltaStore(session_id, store.sessions_dir).get_sync_stats())

    if json_format:
        click.echo(json.dumps(sync_stats.to_dict(), indent=2))
        return

    click.echo(f"Session: {session_id}")
    click.echo(f"Total:   {sync_stats.total}")
    click.echo(f"Pending: {sync_stats.pending}")
    click.echo(f"Syncing: {sync_stats.syncing}")
    click.echo(f"Synced:  {sync_stats.synced}")
    click.echo(f"Failed:  {sync_stats.failed}")


async def _watch(orchestrator: BackgroundSyncOrchestrator, duration: float | None) -> None:
    await orchestrator.on_start()
    try:
        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await orchestrator.on_stop()


@click.command("watch")
@click.argument("session_id")
@_connection_options
@click.option("--interval", type=float, default=None, help="Seconds between sync passes")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_context
def watch(
    ctx: click.Context,
    session_id: str,
    base_url: str | None,
    cookies: str | None,
    api_key: str | None,
    client_type: str,
    dry_run: bool | None,
    interval: float | None,
    duration: float | None,
) -> None:
    """Sync a session periodically until interrupted, then flush once more."""
    config: AppConfig = ctx.obj["config"]
    session_id = resolve_session_id(get_session_store(), session_id)

    try:
        context = build_context(
            config, base_url, cookies, api_key, client_type, __version__, dry_run
        )
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from None

    orchestrator = BackgroundSyncOrchestrator(
        session_id=session_id,
        context=context,
        syncer=_make_syncer(config),
        interval_seconds=interval or config.get_sync_config().interval_seconds,
    )

    click.echo(f"Watching session {session_id} (Ctrl+C to stop)")
    try:
        asyncio.run(_watch(orchestrator, duration))
    except KeyboardInterrupt:
        pass
    click.echo("Stopped.")
