"""Crash detection and recovery of interrupted job lineages.

A marker file is written when the scheduler opens and removed when it
closes gracefully. Finding the marker on the next open means the previous
process died with jobs possibly running; their lineages still carry the
``running`` status in the checkpoint store. Recovery marks those lineages
``paused`` so that a later start resumes them from their stored cursor.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .audit import AuditLogger
from .checkpoint import CheckpointStore
from .exceptions import StoreUnavailableError
from .models import JobSpec, JobStatus

logger = logging.getLogger(__name__)

MARKER_NAME = ".cardvault_running"


@dataclass
class InterruptedLineage:
    job_key: str
    cursor: int
    spec: Optional[JobSpec] = None


@dataclass
class CrashRecoveryReport:
    """Report of crash recovery process.

    Attributes:
        recovered_at: Timestamp when recovery completed
        crash_info: Contents of the marker left by the crashed process
        interrupted: Lineages that were running when the process died
        recovery_duration_seconds: Time taken to complete recovery
        errors: Error messages encountered during recovery
    """

    recovered_at: datetime
    crash_info: Optional[Dict[str, Any]]
    interrupted: List[InterruptedLineage] = field(default_factory=list)
    recovery_duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def was_successful(self) -> bool:
        return len(self.errors) == 0

    @property
    def resumable(self) -> List[InterruptedLineage]:
        return [lineage for lineage in self.interrupted if lineage.spec is not None]


class RecoveryStateTracker:
    """Tracks the crash marker in the workspace directory."""

    def __init__(self, workspace_dir: Path) -> None:
        self._marker = Path(workspace_dir) / MARKER_NAME

    def mark_running(self) -> None:
        self._marker.parent.mkdir(parents=True, exist_ok=True)
        self._marker.write_text(
            json.dumps({"started_at": datetime.utcnow().isoformat(), "pid": os.getpid()})
        )
        logger.debug("Created recovery marker", extra={"marker_path": str(self._marker)})

    def is_recovering_from_crash(self) -> bool:
        return self._marker.exists()

    def get_crash_info(self) -> Optional[Dict[str, Any]]:
        if not self._marker.exists():
            return None
        try:
            return json.loads(self._marker.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read crash info from marker", extra={"error": str(exc)})
            return None

    def clear(self) -> None:
        if self._marker.exists():
            self._marker.unlink()
            logger.debug("Cleared recovery marker")


class CrashRecoveryManager:
    """Moves lineages interrupted by a crash from running to paused."""

    def __init__(
        self,
        checkpoints: CheckpointStore,
        workspace_dir: Path,
        *,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self._checkpoints = checkpoints
        self._tracker = RecoveryStateTracker(workspace_dir)
        self._audit = audit_logger

    @property
    def tracker(self) -> RecoveryStateTracker:
        return self._tracker

    def recover(self) -> CrashRecoveryReport:
        started = time.perf_counter()
        report = CrashRecoveryReport(
            recovered_at=datetime.utcnow(),
            crash_info=self._tracker.get_crash_info(),
        )
        try:
            checkpoints = self._checkpoints.list_checkpoints()
        except StoreUnavailableError as exc:
            report.errors.append(str(exc))
            checkpoints = {}

        for job_key, checkpoint in checkpoints.items():
            if checkpoint.status != JobStatus.RUNNING.value:
                continue
            spec = None
            if checkpoint.spec_json:
                try:
                    spec = JobSpec.model_validate_json(checkpoint.spec_json)
                except ValueError as exc:
                    report.errors.append(f"{job_key}: stored spec unreadable: {exc}")
            try:
                self._checkpoints.mark_status(job_key, JobStatus.PAUSED)
            except StoreUnavailableError as exc:
                report.errors.append(f"{job_key}: {exc}")
                continue
            report.interrupted.append(
                InterruptedLineage(job_key=job_key, cursor=checkpoint.cursor, spec=spec)
            )

        report.recovery_duration_seconds = time.perf_counter() - started
        logger.warning(
            "Recovered from crash",
            extra={
                "interrupted_lineages": [lineage.job_key for lineage in report.interrupted],
                "errors": len(report.errors),
            },
        )
        if self._audit:
            self._audit.record_job_event(
                job_id="crash_recovery",
                action="recover_interrupted_lineages",
                status="succeeded" if report.was_successful() else "partial",
                metadata={
                    "interrupted": [lineage.job_key for lineage in report.interrupted],
                    "crash_info": report.crash_info,
                    "errors": report.errors,
                },
            )
        return report
