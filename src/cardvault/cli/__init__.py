"""Command line entry points for cardvault."""

import logging

import typer
from typer import Typer

from .config_cli import config_app
from .jobs import jobs_app
from .store_cli import store_app


cli = Typer(help="Card collection enrichment and ingestion jobs")
cli.add_typer(jobs_app, name="jobs")
cli.add_typer(config_app, name="config")
cli.add_typer(store_app, name="store")


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["cli"]
