"""
Shared helpers for CLI commands.
"""

import asyncio

import click

from codemie_sync.config.app import AppConfig
from codemie_sync.errors import ConfigurationError
from codemie_sync.processors import ProcessingContext
from codemie_sync.storage.sessions import SessionStore

DEFAULT_CLIENT_TYPE = "codemie-cli"


def get_session_store() -> SessionStore:
    """Get a session store for the configured CODEMIE_HOME."""
    return SessionStore()


def resolve_session_id(store: SessionStore, session_ref: str) -> str:
    """
    Resolve a session reference (exact id or unique prefix) to a full id.

    Raises:
        click.ClickException: If no session or more than one session matches
    """
    if store.exists(session_ref):
        return session_ref

    sessions = asyncio.run(store.list_sessions())
    matches = [s.session_id for s in sessions if s.session_id.startswith(session_ref)]
    if not matches:
        raise click.ClickException(f"Session not found: {session_ref}")
    if len(matches) > 1:
        click.echo(f"Ambiguous session reference '{session_ref}' matches:", err=True)
        for session_id in matches[:5]:
            click.echo(f"  {session_id}", err=True)
        raise click.ClickException(f"Ambiguous session reference: {session_ref}")
    return matches[0]


def build_context(
    config: AppConfig,
    base_url: str | None,
    cookies: str | None,
    api_key: str | None,
    client_type: str,
    version: str,
    dry_run: bool | None,
) -> ProcessingContext:
    """
    Build a processing context from CLI options and configuration.

    Raises:
        ConfigurationError: If the base URL or credentials are missing
    """
    sync_config = config.get_sync_config()
    effective_dry_run = sync_config.dry_run if dry_run is None else dry_run

    if not base_url:
        raise ConfigurationError("API base URL is required (--base-url or CODEMIE_API_URL)")
    if not effective_dry_run and not (cookies or api_key):
        raise ConfigurationError("Credentials are required (--cookies or --api-key)")

    return ProcessingContext(
        api_base_url=base_url,
        client_type=client_type,
        version=version,
        cookies=cookies,
        api_key=api_key,
        dry_run=effective_dry_run,
        timeout=sync_config.request_timeout_seconds,
        batch_size=sync_config.batch_size,
    )
