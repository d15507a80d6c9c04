"""Domain models for the job engine."""

from __future__ import annotations

import dataclasses
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobKind(str, Enum):
    IMAGE_ENRICHMENT = "image_enrichment"
    PRICE_ENRICHMENT = "price_enrichment"
    INGESTION = "ingestion"

    @property
    def is_enrichment(self) -> bool:
        return self is not JobKind.INGESTION


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"  # Admitted, waiting for a slot
    RUNNING = "running"  # Worker loop active
    PAUSED = "paused"  # Stopped at an item boundary, resumable
    COMPLETED = "completed"  # No more eligible work or item cap reached
    CANCELLED = "cancelled"  # Stopped by an operator, not resumable
    FAILED = "failed"  # Store unavailable after retries

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED}
)
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED})


class JobConfig(BaseModel):
    """Per-job pacing and size limits.

    Attributes:
        batch_size: Records fetched per iteration (1-1000)
        max_items: Item cap for one job; the job completes when reached
        item_delay_ms: Pause after every processed item
        batch_delay_ms: Pause after every persisted batch
        throttle_pause_threshold: Consecutive throttled lookups before the
            job pauses itself
    """

    model_config = ConfigDict(extra="forbid")

    batch_size: int = Field(default=10, ge=1, le=1000)
    max_items: int = Field(default=100, ge=1)
    item_delay_ms: int = Field(default=1000, ge=0)
    batch_delay_ms: int = Field(default=500, ge=0)
    throttle_pause_threshold: int = Field(default=3, ge=1, le=100)

    @property
    def item_delay_seconds(self) -> float:
        return self.item_delay_ms / 1000.0

    @property
    def batch_delay_seconds(self) -> float:
        return self.batch_delay_ms / 1000.0


class JobSpec(BaseModel):
    """What to run: the job kind, its limits and, for ingestion, its input."""

    model_config = ConfigDict(extra="forbid")

    kind: JobKind
    config: JobConfig = Field(default_factory=JobConfig)
    input_path: Optional[Path] = None
    source_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_input(self) -> "JobSpec":
        if self.kind is JobKind.INGESTION and self.input_path is None:
            raise ValueError("ingestion jobs require an input_path")
        if self.kind.is_enrichment and self.input_path is not None:
            raise ValueError(f"{self.kind.value} jobs do not take an input_path")
        return self

    @property
    def job_key(self) -> str:
        """Checkpoint lineage key.

        Enrichment lineages are keyed by kind. Ingestion lineages are keyed
        by input source so separate files keep separate cursors.
        """
        if self.kind is JobKind.INGESTION:
            source = self.source_name or Path(self.input_path).stem
            return f"{self.kind.value}:{source}"
        return self.kind.value


@dataclass(slots=True)
class JobStats:
    """Mutable per-job counters, written only by the job's own worker loop."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    last_record_id: Optional[int] = None
    cursor: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    runs: int = 0


@dataclass
class Job:
    """A job owned by the scheduler."""

    job_id: str
    spec: JobSpec
    status: JobStatus = JobStatus.PENDING
    stats: JobStats = field(default_factory=JobStats)
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None
    trigger: str = "manual"
    unresolved: Counter = field(default_factory=Counter)

    @property
    def kind(self) -> JobKind:
        return self.spec.kind

    @property
    def job_key(self) -> str:
        return self.spec.job_key

    def snapshot(self) -> "JobSnapshot":
        stats = self.stats
        return JobSnapshot(
            job_id=self.job_id,
            kind=self.spec.kind,
            job_key=self.spec.job_key,
            status=self.status,
            processed=stats.processed,
            succeeded=stats.succeeded,
            failed=stats.failed,
            skipped=stats.skipped,
            last_record_id=stats.last_record_id,
            cursor=stats.cursor,
            created_at=self.created_at,
            started_at=stats.started_at,
            finished_at=stats.finished_at,
            last_error=self.last_error,
            trigger=self.trigger,
            config=self.spec.config.model_dump(),
        )


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a job's state."""

    job_id: str
    kind: JobKind
    job_key: str
    status: JobStatus
    processed: int
    succeeded: int
    failed: int
    skipped: int
    last_record_id: Optional[int]
    cursor: int
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    last_error: Optional[str]
    trigger: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "job_key": self.job_key,
            "status": self.status.value,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "last_record_id": self.last_record_id,
            "cursor": self.cursor,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "last_error": self.last_error,
            "trigger": self.trigger,
            "config": dict(self.config),
        }


@dataclass(frozen=True)
class Checkpoint:
    """Durable progress of one job lineage.

    ``cursor`` is the last processed record id for enrichment lineages and
    the number of consumed input rows for ingestion lineages. Counters are
    cumulative over the lineage, not per job.
    """

    cursor: int = 0
    added: int = 0
    skipped: int = 0
    errored: int = 0
    status: Optional[str] = None
    spec_json: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        """True when the lineage ended and a new start begins from zero."""
        return self.status in (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)

    def advance(
        self,
        cursor: int,
        *,
        added: int = 0,
        skipped: int = 0,
        errored: int = 0,
    ) -> "Checkpoint":
        return dataclasses.replace(
            self,
            cursor=max(self.cursor, cursor),
            added=self.added + added,
            skipped=self.skipped + skipped,
            errored=self.errored + errored,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cursor": self.cursor,
            "added": self.added,
            "skipped": self.skipped,
            "errored": self.errored,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
