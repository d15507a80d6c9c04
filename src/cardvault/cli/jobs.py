"""CLI commands for running and inspecting jobs."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.table import Table

from ..orchestrator.bootstrap import build_job_scheduler
from ..orchestrator.checkpoint import CheckpointStore
from ..orchestrator.config import EngineConfig
from ..orchestrator.exceptions import JobEngineError, JobStateError
from ..orchestrator.metrics import TelemetryRecorder
from ..orchestrator.models import JobConfig, JobKind, JobSnapshot, JobSpec, JobStatus
from .config_cli import CONFIG_OPTION, load_config

console = Console()
jobs_app = typer.Typer(help="Run and inspect enrichment and ingestion jobs")


def _format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def _status_style(status: JobStatus) -> str:
    return {
        JobStatus.RUNNING: "green",
        JobStatus.PENDING: "yellow",
        JobStatus.PAUSED: "yellow",
        JobStatus.COMPLETED: "green",
        JobStatus.CANCELLED: "dim",
        JobStatus.FAILED: "red",
    }[status]


def _progress_table(snapshot: JobSnapshot) -> Table:
    style = _status_style(snapshot.status)
    table = Table(title=f"{snapshot.kind.value} job {snapshot.job_id}")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Cursor", justify="right")
    table.add_row(
        f"[{style}]{snapshot.status.value}[/{style}]",
        f"{snapshot.processed}/{snapshot.config.get('max_items')}",
        str(snapshot.succeeded),
        str(snapshot.failed),
        str(snapshot.skipped),
        str(snapshot.cursor),
    )
    return table


async def _run_foreground(
    config: EngineConfig, spec: JobSpec, unresolved_limit: int
) -> Tuple[JobSnapshot, List[Tuple[str, int]]]:
    scheduler = build_job_scheduler(config)
    interrupted = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupted.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        handler_installed = False

    await scheduler.open()
    try:
        job_id = await scheduler.start(spec)
        snapshot = scheduler.status(job_id)
        with Live(_progress_table(snapshot), console=console, refresh_per_second=4) as live:
            while snapshot.status in (JobStatus.PENDING, JobStatus.RUNNING):
                if interrupted.is_set():
                    try:
                        snapshot = await scheduler.pause(job_id)
                    except JobStateError:
                        snapshot = await scheduler.cancel(job_id)
                    break
                try:
                    snapshot = await scheduler.join(job_id, timeout=0.5)
                except asyncio.TimeoutError:
                    snapshot = scheduler.status(job_id)
                live.update(_progress_table(snapshot))
            live.update(_progress_table(snapshot))
        return snapshot, scheduler.unresolved_report(job_id, unresolved_limit)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await scheduler.close()
        for service in scheduler.lookups.values():
            aclose = getattr(service, "aclose", None)
            if aclose is not None:
                await aclose()


@jobs_app.command("run")
def run_job(
    kind: JobKind = typer.Argument(..., help="Job kind to run"),
    input_path: Optional[Path] = typer.Option(None, "--input", help="CSV file for ingestion jobs"),
    source: Optional[str] = typer.Option(None, "--source", help="Ingestion lineage name (default: file stem)"),
    batch_size: Optional[int] = typer.Option(None, help="Records per batch"),
    max_items: Optional[int] = typer.Option(None, help="Item cap for this job"),
    delay_ms: Optional[int] = typer.Option(None, "--delay-ms", help="Delay after every item"),
    batch_delay_ms: Optional[int] = typer.Option(None, "--batch-delay-ms", help="Delay after every batch"),
    unresolved_limit: int = typer.Option(10, help="Unresolved labels to report for ingestion"),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Run one job in the foreground. Ctrl-C pauses it at a checkpoint."""
    config = load_config(config_path)
    overrides = {
        "batch_size": batch_size,
        "max_items": max_items,
        "item_delay_ms": delay_ms,
        "batch_delay_ms": batch_delay_ms,
    }
    try:
        job_config = JobConfig(
            **{
                **config.job_defaults.model_dump(),
                **{key: value for key, value in overrides.items() if value is not None},
            }
        )
        spec = JobSpec(kind=kind, config=job_config, input_path=input_path, source_name=source)
    except ValidationError as exc:
        console.print(f"[red]Invalid job options:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    try:
        snapshot, unresolved = asyncio.run(_run_foreground(config, spec, unresolved_limit))
    except JobEngineError as exc:
        console.print(f"[red]Job not started:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    elapsed = ""
    if snapshot.started_at and snapshot.finished_at:
        elapsed = f" in {_format_duration((snapshot.finished_at - snapshot.started_at).total_seconds())}"
    console.print(f"Job {snapshot.job_id} {snapshot.status.value}{elapsed}")
    if snapshot.last_error:
        console.print(f"[yellow]Last error:[/yellow] {snapshot.last_error}")
    if snapshot.status is JobStatus.PAUSED:
        console.print("Run the same command again to resume from the saved checkpoint.")

    if unresolved:
        table = Table(title="Unresolved set labels")
        table.add_column("Label")
        table.add_column("Rows", justify="right")
        for label, count in unresolved:
            table.add_row(label, str(count))
        console.print(table)

    if snapshot.status is JobStatus.FAILED:
        raise typer.Exit(code=1)


@jobs_app.command("checkpoints")
def list_checkpoints(
    format_output: str = typer.Option("table", "--format", help="Output format: table or json"),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """List stored lineage checkpoints."""
    config = load_config(config_path)
    store = CheckpointStore(config.store.checkpoint_path)
    try:
        checkpoints = store.list_checkpoints()
    finally:
        store.close()

    if format_output == "json":
        console.print_json(
            json.dumps({key: checkpoint.to_dict() for key, checkpoint in checkpoints.items()})
        )
        return

    if not checkpoints:
        console.print("No checkpoints stored.")
        return
    table = Table(title="Checkpoints")
    table.add_column("Lineage", style="cyan")
    table.add_column("Status")
    table.add_column("Cursor", justify="right")
    table.add_column("Added", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errored", justify="right")
    table.add_column("Updated")
    for key, checkpoint in checkpoints.items():
        table.add_row(
            key,
            checkpoint.status or "-",
            str(checkpoint.cursor),
            str(checkpoint.added),
            str(checkpoint.skipped),
            str(checkpoint.errored),
            checkpoint.updated_at.isoformat(timespec="seconds") if checkpoint.updated_at else "-",
        )
    console.print(table)


@jobs_app.command("reset")
def reset_checkpoint(
    job_key: str = typer.Argument(..., help="Lineage key, e.g. image_enrichment or ingestion:march"),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Archive a lineage checkpoint so its next run starts from the beginning."""
    config = load_config(config_path)
    store = CheckpointStore(config.store.checkpoint_path)
    try:
        existed = store.reset(job_key)
    finally:
        store.close()
    if not existed:
        console.print(f"[yellow]No checkpoint for {job_key}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Reset checkpoint for {job_key}")


@jobs_app.command("telemetry")
def show_telemetry(config_path: Optional[Path] = CONFIG_OPTION) -> None:
    """Show aggregated run telemetry."""
    config = load_config(config_path)
    summary = TelemetryRecorder(config.telemetry_dir).load_summary()
    overall = summary.get("overall", {})
    console.print(
        f"Runs: {overall.get('runs', 0)}  Processed: {overall.get('processed', 0)}  "
        f"Time: {_format_duration(overall.get('duration', 0.0))}"
    )
    kinds = summary.get("kinds", {})
    if not kinds:
        return
    table = Table(title="By job kind")
    table.add_column("Kind", style="cyan")
    table.add_column("Runs", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    for kind, bucket in kinds.items():
        table.add_row(
            kind,
            str(int(bucket["count"])),
            str(int(bucket["processed"])),
            str(int(bucket["succeeded"])),
            str(int(bucket["failed"])),
            str(int(bucket["skipped"])),
        )
    console.print(table)
