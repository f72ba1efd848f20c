"""CLI command implementations."""

from __future__ import annotations

import logging

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mailbridge.config import Settings
from mailbridge.mcp import stdio_bridge
from mailbridge.mcp.http_server import run_server
from mailbridge.search.engine import FolderSearchEngine, SearchQuery
from mailbridge.store.maildir import LocalMailStore
from mailbridge.store.protocol import MailStoreError
from mailbridge.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)
console = Console(width=200)


def _load_store(settings: Settings) -> LocalMailStore:
    try:
        return LocalMailStore.from_file(settings.accounts_file)
    except MailStoreError as exc:
        raise click.ClickException(str(exc)) from exc


@click.command()
@click.pass_obj
def bridge(settings: Settings) -> None:
    """Relay MCP JSON-RPC between stdio and the mail tool server."""
    stdio_bridge.main(settings)


@click.command()
@click.option("--host", default=None, help="Interface to bind (default from MAILBRIDGE_HOST).")
@click.option("--port", default=None, type=int, help="Port to bind (default from MAILBRIDGE_PORT).")
@click.pass_obj
def serve(settings: Settings, host: str | None, port: int | None) -> None:
    """Serve the mail tools over HTTP on the loopback interface."""
    store = _load_store(settings)
    names = ", ".join(a.name for a in store.accounts()) or "none"
    console.print(f"Serving [bold]{len(store.accounts())}[/bold] account(s): {names}", style="dim")
    run_server(ToolDispatcher(store), host or settings.host, port or settings.port)


@click.command()
def tools() -> None:
    """List the tools exposed to MCP clients."""
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Tool", style="bold")
    table.add_column("Required", max_width=30)
    table.add_column("Description", max_width=90)

    for descriptor in ToolDispatcher.descriptors():
        required = descriptor.get("inputSchema", {}).get("required", [])
        table.add_row(descriptor["name"], ", ".join(required), descriptor.get("description", ""))

    console.print(table)


@click.command()
@click.argument("query", default="")
@click.option("--limit", default=20, show_default=True, help="Number of results.")
@click.option("--since", default=None, help="Earliest date (ISO 8601).")
@click.option("--until", default=None, help="Latest date (ISO 8601; a bare date includes the whole day).")
@click.option("--asc", is_flag=True, help="Oldest first.")
@click.pass_obj
def search(
    settings: Settings,
    query: str,
    limit: int,
    since: str | None,
    until: str | None,
    asc: bool,
) -> None:
    """Search every configured account, newest first."""
    store = _load_store(settings)
    search_query = SearchQuery.from_arguments(
        query=query,
        start_date=since,
        end_date=until,
        max_results=limit,
        sort_order="asc" if asc else "desc",
    )
    roots = [store.root_folder(account) for account in store.accounts()]
    results = FolderSearchEngine(store).search(roots, search_query)

    if not results:
        console.print("[yellow]No matching messages.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=48)
    table.add_column("From", max_width=32)
    table.add_column("Date", width=12)
    table.add_column("Folder", max_width=20)
    table.add_column("Read", width=4)

    for i, result in enumerate(results, start=1):
        subject = escape(result["subject"] or "(no subject)")
        if result["flagged"]:
            subject = f"[yellow]★[/yellow] {subject}"
        table.add_row(
            str(i),
            subject,
            escape(result["author"]),
            (result["date"] or "")[:10],
            escape(result["folder"]),
            "" if result["read"] else "[cyan]•[/cyan]",
        )

    console.print(f"\nSearch results for [bold]{query!r}[/bold]\n")
    console.print(table)
