"""
Session management CLI commands.
"""

import asyncio
import json

import click

from codemie_sync.errors import SessionNotFoundError
from codemie_sync.sessions.lifecycle import SessionLifecycle

from .utils import get_session_store, resolve_session_id


@click.group()
def sessions() -> None:
    """Manage local CodeMie sessions."""
    pass


@sessions.command("list")
@click.option("--status", "-s", help="Filter by status (active, completed, recovered, failed)")
@click.option("--agent", "-a", help="Filter by agent name")
@click.option("--limit", "-n", default=20, help="Max sessions to show")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
def list_sessions(status: str | None, agent: str | None, limit: int, json_format: bool) -> None:
    """List sessions, most recent first."""
    store = get_session_store()
    sessions_list = asyncio.run(store.list_sessions())
    if status:
        sessions_list = [s for s in sessions_list if s.status == status]
    if agent:
        sessions_list = [s for s in sessions_list if s.agent_name == agent]
    sessions_list = sessions_list[:limit]

    if json_format:
        click.echo(json.dumps([s.to_dict() for s in sessions_list], indent=2, default=str))
        return

    if not sessions_list:
        click.echo("No sessions found.")
        return

    click.echo(f"Found {len(sessions_list)} sessions:\n")
    for session in sessions_list:
        status_icon = {
            "active": "●",
            "completed": "✓",
            "recovered": "↺",
            "failed": "✗",
        }.get(session.status, "?")
        click.echo(
            f"{status_icon} {session.session_id[:12]}  {session.agent_name:<10} "
            f"{session.correlation.status:<8} {session.working_directory}"
        )


@sessions.command("show")
@click.argument("session_id")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
def show_session(session_id: str, json_format: bool) -> None:
    """Show details for a session."""
    store = get_session_store()
    session = asyncio.run(store.load(resolve_session_id(store, session_id)))

    if json_format:
        click.echo(json.dumps(session.to_dict(), indent=2, default=str))
        return

    click.echo(f"Session: {session.session_id}")
    click.echo(f"Status: {session.status}")
    click.echo(f"Agent: {session.agent_name} ({session.provider})")
    click.echo(f"Directory: {session.working_directory}")
    if session.project:
        click.echo(f"Project: {session.project}")
    if session.git_branch:
        click.echo(f"Branch: {session.git_branch}")
    click.echo(f"Correlation: {session.correlation.status}")
    if session.correlation.agent_session_file:
        click.echo(f"Agent log: {session.correlation.agent_session_file}")
    if session.sync and session.sync.metrics:
        metrics = session.sync.metrics
        click.echo(
            f"Metrics: {metrics.total_deltas} deltas, {metrics.total_synced} synced, "
            f"{metrics.total_failed} failed attempts"
        )
        if metrics.last_sync_error:
            click.echo(f"Last error: {metrics.last_sync_error}")


@sessions.command("end")
@click.argument("session_id")
@click.option("--reason", help="Why the session ended (clear, logout, prompt_input_exit, other)")
def end_session(session_id: str, reason: str | None) -> None:
    """Mark a session completed."""
    store = get_session_store()
    lifecycle = SessionLifecycle(store)
    try:
        session = asyncio.run(lifecycle.end_session(resolve_session_id(store, session_id), reason))
    except SessionNotFoundError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1) from None
    click.echo(f"Ended session {session.session_id}")


@sessions.command("recover")
@click.option(
    "--stale-after",
    default=3600.0,
    type=float,
    help="Seconds of inactivity after which an active session is recovered",
)
def recover_sessions(stale_after: float) -> None:
    """Mark idle active sessions as recovered."""
    lifecycle = SessionLifecycle(get_session_store())
    recovered = asyncio.run(lifecycle.recover_active_sessions(stale_after_seconds=stale_after))
    if not recovered:
        click.echo("No stale sessions.")
        return
    for session in recovered:
        click.echo(f"Recovered {session.session_id}")
