"""
codemie-sync CLI entry point.
"""

import click

from codemie_sync.config.app import load_config
from codemie_sync.utils.logging import setup_logging

from .sessions import sessions
from .sync import stats, sync_session, watch


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to custom configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """codemie-sync - Sync local agent session metrics to CodeMie analytics."""
    ctx.ensure_object(dict)
    try:
        app_config = load_config(config)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["config"] = app_config
    setup_logging(verbose=verbose, settings=app_config.logging)


# Register commands
cli.add_command(sessions)
cli.add_command(sync_session)
cli.add_command(stats)
cli.add_command(watch)
