"""CLI entry point for mailbridge."""

import logging

import click
from dotenv import load_dotenv

from mailbridge.config import Settings, setup_logging

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Mail tool server for MCP clients — bridge, serve, and inspection commands."""
    load_dotenv()
    settings = Settings.from_env()
    # Logs go to stderr; the bridge owns stdout
    setup_logging("INFO" if verbose else settings.log_level)
    ctx.obj = settings


# Import and register commands after cli is defined to avoid circular imports.
from mailbridge.cli.commands import bridge, search, serve, tools  # noqa: E402

cli.add_command(bridge)
cli.add_command(serve)
cli.add_command(tools)
cli.add_command(search)
