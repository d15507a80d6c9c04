"""Status reporting utilities for the job engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from .checkpoint import CheckpointStore
from .exceptions import StoreUnavailableError
from .scheduler import JobScheduler


def collect_status_report(
    scheduler: JobScheduler,
    checkpoints: Optional[CheckpointStore] = None,
) -> Dict[str, Any]:
    """Snapshot of jobs, capacity, cache and lineage checkpoints."""
    jobs = [snapshot.to_dict() for snapshot in scheduler.list_jobs()]
    by_status: Dict[str, int] = {}
    for job in jobs:
        by_status[job["status"]] = by_status.get(job["status"], 0) + 1

    report: Dict[str, Any] = {
        "generated_at": datetime.utcnow().isoformat(),
        "capacity": scheduler.capacity(),
        "jobs": jobs,
        "jobs_by_status": by_status,
        "cache": scheduler.cache_stats(),
        "schedules": scheduler.list_schedules(),
    }

    if checkpoints is not None:
        try:
            report["checkpoints"] = {
                key: checkpoint.to_dict()
                for key, checkpoint in checkpoints.list_checkpoints().items()
            }
        except StoreUnavailableError as exc:
            report["checkpoints"] = {}
            report["checkpoint_error"] = str(exc)
    return report
