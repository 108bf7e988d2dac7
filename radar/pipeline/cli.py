"""CLI for running radar connectors by hand.

Usage:
    radar sources
    radar fetch --source hn_top --max-items 20
    radar fetch --source sec_insiders --window-hours 6 --dry-run --json
    radar status
    radar reset --source hn_top
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Any, Dict, List, Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from radar.connectors.base import DEFAULT_MAX_ITEMS, FetchLimits, FetchParams, utcnow
from radar.connectors.registry import CONNECTORS, available_source_types, build_connector
from radar.pipeline.cursors import DEFAULT_STATE_PATH, CursorStore
from radar.pipeline.runner import run_source

console = Console()

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_WINDOW_HOURS = 24.0


def run_async(coro):
    """Run an async function to completion."""
    return asyncio.run(coro)


def load_sources(config_path: str) -> List[Dict[str, Any]]:
    """Read ``sources`` entries ({id, type, config}) from the YAML config."""
    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
    sources = []
    for entry in config.get("sources") or []:
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("type"):
            logging.getLogger(__name__).warning("Skipping malformed source entry: %r", entry)
            continue
        sources.append(entry)
    return sources


def find_source(config_path: str, source_id: str) -> Optional[Dict[str, Any]]:
    for entry in load_sources(config_path):
        if entry["id"] == source_id:
            return entry
    return None


@click.group()
@click.option("--config", default=DEFAULT_CONFIG_PATH, help="Config file path")
@click.option("--state", default=DEFAULT_STATE_PATH, help="Cursor state file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config: str, state: str, verbose: bool):
    """radar content connector CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["state_path"] = state


@cli.command()
@click.pass_context
def sources(ctx):
    """List connector types and configured sources."""
    table = Table(title="Connector Types")
    table.add_column("Type", style="cyan")
    table.add_column("Connector")
    for source_type in available_source_types():
        table.add_row(source_type, CONNECTORS[source_type].__name__)
    console.print(table)

    try:
        configured = load_sources(ctx.obj["config_path"])
    except FileNotFoundError:
        console.print(f"[yellow]No config at {ctx.obj['config_path']}[/yellow]")
        return
    if configured:
        table = Table(title="Configured Sources")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Known")
        for entry in configured:
            known = entry["type"] in CONNECTORS
            table.add_row(entry["id"], entry["type"], "[green]yes" if known else "[red]no")
        console.print(table)


@cli.command()
@click.option("--source", "source_id", required=True, help="Source id from the config file")
@click.option("--max-items", type=int, default=DEFAULT_MAX_ITEMS, help="Max raw items to fetch")
@click.option("--window-hours", type=float, default=DEFAULT_WINDOW_HOURS, help="Window length ending now")
@click.option("--dry-run", is_flag=True, help="Do not persist the next cursor")
@click.option("--json", "as_json", is_flag=True, help="Print drafts as JSON")
@click.pass_context
def fetch(ctx, source_id: str, max_items: int, window_hours: float, dry_run: bool, as_json: bool):
    """Fetch and normalize one source."""
    try:
        entry = find_source(ctx.obj["config_path"], source_id)
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] config file {ctx.obj['config_path']} not found")
        sys.exit(1)
    if entry is None:
        console.print(f"[red]Error:[/red] unknown source {source_id}")
        sys.exit(1)

    try:
        connector = build_connector(entry["type"])
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    store = CursorStore(ctx.obj["state_path"])
    window_end = utcnow()
    params = FetchParams(
        user_id=str(entry.get("user_id", "local")),
        source_id=source_id,
        source_type=connector.source_type,
        config=dict(entry.get("config") or {}),
        cursor=store.get(source_id),
        limits=FetchLimits(max_items=max_items),
        window_start=window_end - timedelta(hours=window_hours),
        window_end=window_end,
    )

    async def _run():
        with console.status(f"[bold green]Fetching {source_id}..."):
            return await run_source(connector, params)

    result = run_async(_run())

    if result.ok and not dry_run:
        store.save(source_id, result.next_cursor)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        table = Table(title=f"{source_id} ({result.source_type})")
        table.add_column("#", style="dim", width=4)
        table.add_column("Title", max_width=60)
        table.add_column("Published", width=20)
        table.add_column("URL", style="cyan", overflow="fold")
        for i, draft in enumerate(result.drafts, 1):
            title = draft.title or (draft.body_text or "")[:60]
            table.add_row(str(i), title, draft.published_at or "?", draft.canonical_url or "")
        console.print(table)
        console.print(
            f"fetched={result.fetched} normalized={result.normalized} "
            f"errors={result.errors} in {result.duration_seconds:.1f}s"
        )
        if "error" in result.meta:
            console.print(f"[yellow]{result.meta.get('errorCode', 'error')}:[/yellow] {result.meta['error']}")

    if not result.ok:
        console.print(f"[red]Fetch failed:[/red] {result.error_message}")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show stored cursors per source."""
    store = CursorStore(ctx.obj["state_path"])
    cursors = store.all()
    if not cursors:
        console.print(f"[yellow]No cursors stored in {ctx.obj['state_path']}[/yellow]")
        return
    table = Table(title="Source Cursors")
    table.add_column("Source", style="cyan")
    table.add_column("Updated")
    table.add_column("Cursor", overflow="fold")
    for source_id in sorted(cursors):
        table.add_row(
            source_id,
            store.updated_at(source_id) or "never",
            json.dumps(store.get(source_id), sort_keys=True)[:200],
        )
    console.print(table)


@cli.command()
@click.option("--source", "source_id", required=True, help="Source id whose cursor to drop")
@click.pass_context
def reset(ctx, source_id: str):
    """Forget a source's cursor so the next fetch starts fresh."""
    if CursorStore(ctx.obj["state_path"]).clear(source_id):
        console.print(f"[green]Cleared cursor for {source_id}")
    else:
        console.print(f"[yellow]No cursor stored for {source_id}")


def main():
    cli()


if __name__ == "__main__":
    main()
