"""CLI commands for the local SQLite card store."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..storage.sqlite_store import SqliteCardStore
from .config_cli import CONFIG_OPTION, load_config

console = Console()
store_app = typer.Typer(help="Inspect and prepare the card store")


def _open_store(config_path: Optional[Path]) -> SqliteCardStore:
    config = load_config(config_path)
    return SqliteCardStore(config.store.database_path)


@store_app.command("init")
def init_store(config_path: Optional[Path] = CONFIG_OPTION) -> None:
    """Create the card store database if it does not exist."""
    store = _open_store(config_path)
    try:
        console.print(f"[green]Card store ready:[/green] {store.path}")
    finally:
        store.close()


@store_app.command("add-set")
def add_set(
    name: str = typer.Argument(..., help="Canonical set name"),
    year: Optional[int] = typer.Option(None, help="Release year"),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Add a canonical card set that ingestion can resolve labels against."""
    store = _open_store(config_path)
    try:
        set_id = store.add_card_set(name, year=year)
    finally:
        store.close()
    console.print(f"Added set [bold]{name}[/bold] with id {set_id}")


@store_app.command("stats")
def store_stats(config_path: Optional[Path] = CONFIG_OPTION) -> None:
    """Show record counts and how many records still need enrichment."""
    store = _open_store(config_path)
    try:
        stats = store.stats()
    finally:
        store.close()

    table = Table(title="Card Store")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Sets", str(stats["sets"]))
    table.add_row("Cards", str(stats["cards"]))
    table.add_row("Missing image", str(stats["missing_image"]))
    table.add_row("Missing price", str(stats["missing_price"]))
    console.print(table)
