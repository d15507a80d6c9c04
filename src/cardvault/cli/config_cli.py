"""CLI commands for managing the engine configuration file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console

from ..orchestrator.config import ConfigurationError, ConfigurationManager, EngineConfig

console = Console()
config_app = typer.Typer(help="Manage engine configuration")

CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Configuration file (default: ~/.cardvault/config.yaml)"
)


def load_config(config_path: Optional[Path]) -> EngineConfig:
    """Load configuration or exit with the validation message."""
    try:
        config = ConfigurationManager(config_path).load()
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    root = logging.getLogger()
    # --verbose wins over the configured level
    if root.level != logging.DEBUG:
        root.setLevel(config.log_level)
    return config


@config_app.command("show")
def show_config(config_path: Optional[Path] = CONFIG_OPTION) -> None:
    """Print the effective configuration as YAML."""
    config = load_config(config_path)
    console.print(
        yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
        highlight=False,
    )


@config_app.command("validate")
def validate_config(config_path: Optional[Path] = CONFIG_OPTION) -> None:
    """Validate a configuration file."""
    manager = ConfigurationManager(config_path)
    errors = manager.validate()
    if errors:
        console.print(f"[red]Configuration invalid:[/red] {manager.config_path}")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(code=1)
    console.print(f"[green]Configuration valid:[/green] {manager.config_path}")


@config_app.command("init")
def init_config(
    config_path: Optional[Path] = CONFIG_OPTION,
    workspace: Optional[Path] = typer.Option(None, help="Workspace directory to store data in"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file with default settings."""
    manager = ConfigurationManager(config_path)
    if manager.config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists:[/yellow] {manager.config_path}")
        raise typer.Exit(code=1)

    config = EngineConfig()
    if workspace is not None:
        workspace = workspace.expanduser()
        config = EngineConfig(
            workspace_path=workspace,
            store={
                "database_path": workspace / "cardvault.db",
                "checkpoint_path": workspace / "checkpoints.db",
            },
        )
    manager.save(config)
    console.print(f"[green]Wrote configuration:[/green] {manager.config_path}")
