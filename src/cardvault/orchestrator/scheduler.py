"""Async job scheduler for enrichment and ingestion jobs, with cron runs via APScheduler."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter

from ..ingestion.name_resolver import top_unresolved
from ..ingestion.sources import CsvInputSource, InputFormatError
from ..lookups.base import LookupService
from ..storage.cache import TTLCache
from ..storage.records import RecordStore
from .audit import AuditLogger
from .checkpoint import CheckpointStore
from .crash_recovery import CrashRecoveryManager, CrashRecoveryReport
from .exceptions import (
    AdmissionError,
    AdmissionQueueFullError,
    AlreadyRunningError,
    JobConfigurationError,
    JobEngineError,
    JobKindDisabledError,
    JobNotFoundError,
    JobNotPausedError,
    JobNotRunningError,
    JobStateError,
    SchedulerClosedError,
    StoreUnavailableError,
)
from .metrics import TelemetryRecorder
from .models import Job, JobConfig, JobKind, JobSnapshot, JobSpec, JobStatus
from .rate_limiter import RateLimiter
from .retry_policy import RetryPolicy
from .state_machine import StateMachineValidator
from .worker import (
    BatchWorker,
    EnrichmentWorker,
    IngestionWorker,
    JobControl,
    WorkerOutcome,
)

logger = logging.getLogger(__name__)

CACHE_SWEEP_JOB_ID = "cache-sweep"

T = TypeVar("T")


@dataclass
class ScheduleRegistration:
    schedule_id: str
    spec: JobSpec
    cron: str


class JobScheduler:
    """Owns the job table, the concurrency cap and job lifecycle control.

    At most ``max_concurrent_jobs`` jobs run at once across all kinds.
    Starts beyond the cap wait in a FIFO admission queue and are promoted
    as slots free up. Only one job per kind may be active (pending, running
    or paused), so two loops never enrich the same records.

    The job table is guarded by an ``asyncio.Lock``; ``status`` and
    ``list_jobs`` read without it and never wait on a worker.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        checkpoints: CheckpointStore,
        lookups: Optional[Mapping[JobKind, LookupService]] = None,
        rate_limiters: Optional[Mapping[JobKind, RateLimiter]] = None,
        cache: Optional[TTLCache] = None,
        max_concurrent_jobs: int = 2,
        max_queued_jobs: int = 8,
        enabled_kinds: Optional[Iterable[JobKind]] = None,
        store_retry: Optional[RetryPolicy] = None,
        telemetry: Optional[TelemetryRecorder] = None,
        audit_logger: Optional[AuditLogger] = None,
        workspace_dir: Optional[Path] = None,
        auto_resume_interrupted: bool = False,
        cache_sweep_interval_seconds: Optional[float] = None,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1")
        if max_queued_jobs < 0:
            raise ValueError("max_queued_jobs must be >= 0")
        self._store = store
        self._checkpoints = checkpoints
        self._lookups: Dict[JobKind, LookupService] = dict(lookups or {})
        self._rate_limiters: Dict[JobKind, RateLimiter] = dict(rate_limiters or {})
        self._cache = cache
        self._max_concurrent = max_concurrent_jobs
        self._max_queued = max_queued_jobs
        self._enabled_kinds = frozenset(enabled_kinds if enabled_kinds is not None else JobKind)
        self._store_retry = store_retry or RetryPolicy()
        self._telemetry = telemetry
        self._audit = audit_logger
        self._validator = StateMachineValidator(audit_logger)
        self._recovery = (
            CrashRecoveryManager(checkpoints, workspace_dir, audit_logger=audit_logger)
            if workspace_dir is not None
            else None
        )
        self._auto_resume = auto_resume_interrupted
        self._cache_sweep_interval = cache_sweep_interval_seconds

        self._lock = asyncio.Lock()
        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._controls: Dict[str, JobControl] = {}
        self._workers: Dict[str, BatchWorker] = {}
        self._settled: Dict[str, asyncio.Event] = {}
        self._admission: Deque[str] = deque()
        self._schedules: Dict[str, ScheduleRegistration] = {}
        self._apscheduler: Optional[AsyncIOScheduler] = None
        self._opened = False
        self._closing = False

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    @property
    def lookups(self) -> Dict[JobKind, LookupService]:
        return dict(self._lookups)

    # ------------------------------------------------------------------
    # Lifecycle of the scheduler itself
    # ------------------------------------------------------------------

    async def open(self) -> Optional[CrashRecoveryReport]:
        """Start cron schedules and the cache sweep, recovering from a crash first."""
        if self._opened:
            return None
        report = None
        if self._recovery is not None:
            if self._recovery.tracker.is_recovering_from_crash():
                report = self._recovery.recover()
            self._recovery.tracker.mark_running()

        self._apscheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        for registration in self._schedules.values():
            self._register_cron(registration)
        if self._cache is not None and self._cache_sweep_interval:
            self._apscheduler.add_job(
                self.sweep_cache,
                trigger=IntervalTrigger(seconds=self._cache_sweep_interval),
                id=CACHE_SWEEP_JOB_ID,
                replace_existing=True,
            )
        self._apscheduler.start()
        self._opened = True
        self._closing = False
        logger.info(
            "Job scheduler started",
            extra={
                "max_concurrent_jobs": self._max_concurrent,
                "enabled_kinds": sorted(kind.value for kind in self._enabled_kinds),
                "schedules": len(self._schedules),
            },
        )

        if report is not None and self._auto_resume:
            for lineage in report.resumable:
                try:
                    await self.start(lineage.spec, trigger="recovery")
                except JobEngineError as exc:
                    logger.warning(
                        "Could not resume interrupted lineage",
                        extra={"job_key": lineage.job_key, "error": str(exc)},
                    )
        return report

    async def close(self) -> None:
        """Pause running and queued jobs (saving their checkpoints) and stop schedules.

        Queued jobs never got a slot, so they move straight to ``paused``
        and their lineage keeps whatever cursor it already had.
        """
        self._closing = True
        async with self._lock:
            running = [job.job_id for job in self._jobs.values() if job.status is JobStatus.RUNNING]
            held = self._hold_queued()
        results = await asyncio.gather(*(self.pause(job_id) for job_id in running), return_exceptions=True)
        for job_id, result in zip(running, results):
            if isinstance(result, JobStateError):
                continue
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to pause job during shutdown",
                    extra={"job_id": job_id},
                    exc_info=result,
                )
        if self._apscheduler is not None and self._apscheduler.running:
            self._apscheduler.shutdown(wait=False)
        self._apscheduler = None
        if self._recovery is not None:
            self._recovery.tracker.clear()
        self._opened = False
        logger.info(
            "Job scheduler stopped",
            extra={"paused_jobs": len(running), "held_queued_jobs": held},
        )

    async def __aenter__(self) -> "JobScheduler":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Job control surface
    # ------------------------------------------------------------------

    async def start(self, spec: JobSpec, *, trigger: str = "manual") -> str:
        """Create a job for ``spec`` and run it now or queue it.

        Raises:
            AdmissionError: Disabled kind, kind already active, queue full,
                unusable spec, or scheduler shutting down
            StoreUnavailableError: Checkpoint store still failing after
                the store retry policy is exhausted
        """
        if self._closing:
            raise SchedulerClosedError("Job scheduler is shutting down")
        self._validate_spec(spec)

        async with self._lock:
            active = self._active_job(spec.kind)
            if active is not None:
                raise AlreadyRunningError(spec.kind.value, active.job_id)
            has_slot = self._running_count() < self._max_concurrent
            if not has_slot and len(self._admission) >= self._max_queued:
                raise AdmissionQueueFullError(
                    f"All {self._max_concurrent} slots busy and {len(self._admission)} jobs queued"
                )

            checkpoint = await self._checkpoint_call(self._checkpoints.load, spec.job_key)
            if checkpoint.is_closed:
                await self._checkpoint_call(self._checkpoints.reset, spec.job_key)
                checkpoint_cursor = 0
            else:
                checkpoint_cursor = checkpoint.cursor

            job = Job(job_id=uuid.uuid4().hex[:12], spec=spec, trigger=trigger)
            job.stats.cursor = checkpoint_cursor
            self._jobs[job.job_id] = job
            self._settled[job.job_id] = asyncio.Event()
            self._audit_event(
                job,
                "start",
                "accepted",
                {"trigger": trigger, "resume_cursor": checkpoint_cursor},
            )

            if has_slot:
                self._launch(job)
            else:
                self._admission.append(job.job_id)
                logger.info(
                    "Job queued",
                    extra={
                        "job_id": job.job_id,
                        "job_kind": spec.kind.value,
                        "queue_depth": len(self._admission),
                    },
                )
        return job.job_id

    async def pause(self, job_id: str) -> JobSnapshot:
        """Stop a running job at its next item boundary and wait for it."""
        async with self._lock:
            job = self._get(job_id)
            if job.status is not JobStatus.RUNNING:
                raise JobNotRunningError(job_id, job.status.value)
            self._controls[job_id].request_stop(JobStatus.PAUSED)
            task = self._tasks[job_id]
        logger.info("Pause requested", extra={"job_id": job_id})
        await asyncio.wait({task})
        self._audit_event(job, "pause", job.status.value)
        return job.snapshot()

    async def resume(self, job_id: str) -> JobSnapshot:
        """Re-admit a paused job under the usual cap rules."""
        if self._closing:
            raise SchedulerClosedError("Job scheduler is shutting down")
        async with self._lock:
            job = self._get(job_id)
            if job.status is not JobStatus.PAUSED:
                raise JobNotPausedError(job_id, job.status.value)
            if self._running_count() < self._max_concurrent:
                self._launch(job)
            else:
                if len(self._admission) >= self._max_queued:
                    raise AdmissionQueueFullError(
                        f"All {self._max_concurrent} slots busy and {len(self._admission)} jobs queued"
                    )
                self._transition(job, JobStatus.PENDING, reason="resume queued")
                self._settled[job_id].clear()
                self._admission.append(job_id)
            self._audit_event(job, "resume", job.status.value)
        logger.info("Job resumed", extra={"job_id": job_id, "status": job.status.value})
        return job.snapshot()

    async def cancel(self, job_id: str) -> JobSnapshot:
        """Cancel a job for good. Cancelling a finished job is a no-op."""
        task: Optional[asyncio.Task] = None
        async with self._lock:
            job = self._get(job_id)
            if job.status.is_terminal:
                logger.debug("Cancel ignored for finished job", extra={"job_id": job_id})
                return job.snapshot()
            if job.status is JobStatus.RUNNING:
                self._controls[job_id].request_stop(JobStatus.CANCELLED)
                task = self._tasks[job_id]
            else:
                if job_id in self._admission:
                    self._admission.remove(job_id)
                self._transition(job, JobStatus.CANCELLED, reason="cancelled by operator")
                job.stats.finished_at = datetime.utcnow()
                self._settled[job_id].set()
                try:
                    self._checkpoints.mark_status(job.job_key, JobStatus.CANCELLED)
                except StoreUnavailableError as exc:
                    logger.error(
                        "Could not record cancelled lineage",
                        extra={"job_id": job_id, "error": str(exc)},
                    )
        if task is not None:
            await asyncio.wait({task})
        self._audit_event(job, "cancel", job.status.value)
        logger.info("Job cancelled", extra={"job_id": job_id, "status": job.status.value})
        return job.snapshot()

    def status(self, job_id: str) -> JobSnapshot:
        return self._get(job_id).snapshot()

    def list_jobs(self) -> List[JobSnapshot]:
        return [job.snapshot() for job in list(self._jobs.values())]

    async def join(self, job_id: str, timeout: Optional[float] = None) -> JobSnapshot:
        """Wait until the job is no longer pending or running."""
        self._get(job_id)
        await asyncio.wait_for(self._settled[job_id].wait(), timeout=timeout)
        return self.status(job_id)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is pending or running."""
        events = [
            self._settled[job.job_id]
            for job in list(self._jobs.values())
            if job.status in (JobStatus.PENDING, JobStatus.RUNNING)
        ]
        if events:
            await asyncio.wait_for(
                asyncio.gather(*(event.wait() for event in events)), timeout=timeout
            )

    def unresolved_report(self, job_id: str, limit: int = 10) -> List[Tuple[str, int]]:
        """Most frequent unresolved labels seen by an ingestion job."""
        return top_unresolved(self._get(job_id).unresolved, limit)

    def clear_finished(self, keep: int = 0) -> int:
        """Forget finished jobs, keeping the ``keep`` most recently finished."""
        finished = sorted(
            (job for job in self._jobs.values() if job.status.is_terminal),
            key=lambda job: job.stats.finished_at or job.created_at,
        )
        doomed = finished[: max(0, len(finished) - keep)]
        for job in doomed:
            del self._jobs[job.job_id]
            self._settled.pop(job.job_id, None)
        if doomed:
            logger.debug("Cleared finished jobs", extra={"cleared": len(doomed)})
        return len(doomed)

    def reset_checkpoint(self, job_key: str) -> bool:
        """Start a lineage over from zero on its next start."""
        for job in self._jobs.values():
            if job.job_key == job_key and job.status.is_active:
                raise AlreadyRunningError(job.kind.value, job.job_id)
        return self._checkpoints.reset(job_key)

    def capacity(self) -> Dict[str, int]:
        return {
            "max_concurrent_jobs": self._max_concurrent,
            "running": self._running_count(),
            "queued": len(self._admission),
            "max_queued_jobs": self._max_queued,
        }

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    def cache_stats(self) -> Dict[str, int]:
        if self._cache is None:
            return {"size": 0, "hits": 0, "misses": 0}
        return self._cache.stats()

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def sweep_cache(self) -> int:
        return self._cache.sweep() if self._cache is not None else 0

    # ------------------------------------------------------------------
    # Cron schedules
    # ------------------------------------------------------------------

    def add_schedule(
        self,
        kind: JobKind,
        cron: str,
        *,
        config: Optional[JobConfig] = None,
        input_path: Optional[Path] = None,
        source_name: Optional[str] = None,
        schedule_id: Optional[str] = None,
    ) -> str:
        """Start a job of ``kind`` on a crontab schedule.

        A scheduled start that conflicts with an active job is skipped.
        """
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron schedule: {cron}")
        spec = JobSpec(
            kind=kind,
            config=config or JobConfig(),
            input_path=input_path,
            source_name=source_name,
        )
        registration = ScheduleRegistration(
            schedule_id=schedule_id or f"schedule-{spec.job_key}",
            spec=spec,
            cron=cron,
        )
        self._schedules[registration.schedule_id] = registration
        if self._apscheduler is not None:
            self._register_cron(registration)
        logger.info(
            "Registered schedule",
            extra={"schedule_id": registration.schedule_id, "job_kind": kind.value, "cron": cron},
        )
        return registration.schedule_id

    def remove_schedule(self, schedule_id: str) -> None:
        if self._schedules.pop(schedule_id, None) is None:
            raise JobNotFoundError(f"Unknown schedule {schedule_id}")
        if self._apscheduler is not None:
            try:
                self._apscheduler.remove_job(schedule_id)
            except JobLookupError:
                pass

    def list_schedules(self) -> List[Dict[str, Any]]:
        schedules = []
        for registration in self._schedules.values():
            next_run = None
            if self._apscheduler is not None:
                scheduled = self._apscheduler.get_job(registration.schedule_id)
                next_run = getattr(scheduled, "next_run_time", None)
            schedules.append(
                {
                    "schedule_id": registration.schedule_id,
                    "kind": registration.spec.kind.value,
                    "cron": registration.cron,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return schedules

    def _register_cron(self, registration: ScheduleRegistration) -> None:
        self._apscheduler.add_job(
            self._run_scheduled,
            trigger=CronTrigger.from_crontab(registration.cron),
            args=[registration.spec],
            id=registration.schedule_id,
            replace_existing=True,
        )

    async def _run_scheduled(self, spec: JobSpec) -> None:
        try:
            job_id = await self.start(spec, trigger="schedule")
        except AdmissionError as exc:
            logger.info(
                "Scheduled run skipped",
                extra={"job_kind": spec.kind.value, "reason": str(exc)},
            )
            return
        except StoreUnavailableError as exc:
            logger.error(
                "Scheduled run could not start",
                extra={"job_kind": spec.kind.value, "error": str(exc)},
            )
            return
        logger.info("Scheduled run started", extra={"job_id": job_id, "job_kind": spec.kind.value})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_spec(self, spec: JobSpec) -> None:
        if spec.kind not in self._enabled_kinds:
            raise JobKindDisabledError(f"{spec.kind.value} jobs are disabled")
        if spec.kind.is_enrichment:
            if spec.kind not in self._lookups:
                raise JobConfigurationError(f"No lookup service configured for {spec.kind.value}")
            return
        path = Path(spec.input_path)
        if not path.is_file():
            raise JobConfigurationError(f"Input file not found: {path}")
        try:
            CsvInputSource(path).columns()
        except (InputFormatError, OSError, UnicodeDecodeError) as exc:
            raise JobConfigurationError(str(exc)) from exc

    async def _checkpoint_call(self, func: Callable[..., T], *args: Any) -> T:
        """Call a checkpoint store operation under the store retry policy."""
        attempt = 0
        while True:
            try:
                return func(*args)
            except StoreUnavailableError as exc:
                attempt += 1
                if not self._store_retry.should_retry(attempt):
                    logger.error(
                        "Checkpoint store unavailable after retries",
                        extra={"operation": func.__name__, "attempts": attempt, "error": str(exc)},
                    )
                    raise
                delay = self._store_retry.calculate_delay(attempt - 1)
                logger.warning(
                    "Checkpoint store call failed, retrying",
                    extra={"operation": func.__name__, "attempt": attempt, "delay_seconds": round(delay, 3)},
                )
                await asyncio.sleep(delay)

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Unknown job {job_id}")
        return job

    def _active_job(self, kind: JobKind) -> Optional[Job]:
        for job in self._jobs.values():
            if job.kind is kind and job.status.is_active:
                return job
        return None

    def _running_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status is JobStatus.RUNNING)

    def _rate_limiter(self, kind: JobKind) -> RateLimiter:
        limiter = self._rate_limiters.get(kind)
        if limiter is None:
            limiter = RateLimiter(name=kind.value)
            self._rate_limiters[kind] = limiter
        return limiter

    def _build_worker(self, job: Job, control: JobControl) -> BatchWorker:
        common: Dict[str, Any] = {
            "store": self._store,
            "checkpoints": self._checkpoints,
            "control": control,
            "cache": self._cache,
            "store_retry": self._store_retry,
        }
        if job.kind.is_enrichment:
            return EnrichmentWorker(
                job,
                lookup=self._lookups[job.kind],
                rate_limiter=self._rate_limiter(job.kind),
                **common,
            )
        return IngestionWorker(job, source=CsvInputSource(job.spec.input_path), **common)

    def _transition(self, job: Job, to_status: JobStatus, *, reason: Optional[str] = None) -> None:
        self._validator.validate_transition(
            job.job_id,
            job.status,
            to_status,
            reason=reason,
            metadata={"job_kind": job.kind.value, "job_key": job.job_key},
        )
        job.status = to_status

    def _launch(self, job: Job) -> None:
        """Move ``job`` to running and spawn its worker. Caller holds the lock."""
        self._transition(job, JobStatus.RUNNING)
        job.last_error = None
        job.stats.runs += 1
        if job.stats.started_at is None:
            job.stats.started_at = datetime.utcnow()
        control = JobControl()
        worker = self._build_worker(job, control)
        self._controls[job.job_id] = control
        self._workers[job.job_id] = worker
        self._settled[job.job_id].clear()
        self._tasks[job.job_id] = asyncio.get_running_loop().create_task(
            self._run_worker(job, worker), name=f"job-{job.job_id}"
        )
        logger.info(
            "Job running",
            extra={
                "job_id": job.job_id,
                "job_kind": job.kind.value,
                "job_key": job.job_key,
                "run": job.stats.runs,
            },
        )

    async def _run_worker(self, job: Job, worker: BatchWorker) -> None:
        started = time.monotonic()
        before = (job.stats.processed, job.stats.succeeded, job.stats.failed, job.stats.skipped)
        try:
            outcome = await worker.run()
        except Exception as exc:
            logger.error(
                "Worker crashed",
                extra={"job_id": job.job_id, "job_kind": job.kind.value},
                exc_info=True,
            )
            outcome = WorkerOutcome(JobStatus.FAILED, error=f"{type(exc).__name__}: {exc}")
            try:
                self._checkpoints.mark_status(job.job_key, JobStatus.FAILED)
            except StoreUnavailableError:
                logger.error("Could not record failed lineage", extra={"job_id": job.job_id})
        duration = time.monotonic() - started

        async with self._lock:
            self._finish(job, outcome)
            self._tasks.pop(job.job_id, None)
            self._controls.pop(job.job_id, None)
            self._workers.pop(job.job_id, None)
            self._promote()

        if self._telemetry is not None:
            stats = job.stats
            self._telemetry.record(
                job.job_id,
                job.kind.value,
                outcome.status.value,
                duration,
                processed=stats.processed - before[0],
                succeeded=stats.succeeded - before[1],
                failed=stats.failed - before[2],
                skipped=stats.skipped - before[3],
                metadata={
                    "job_key": job.job_key,
                    "trigger": job.trigger,
                    "run": stats.runs,
                    "error": outcome.error,
                },
            )

    def _finish(self, job: Job, outcome: WorkerOutcome) -> None:
        self._transition(job, outcome.status, reason=outcome.error)
        if outcome.error:
            job.last_error = outcome.error
        if outcome.status.is_terminal:
            job.stats.finished_at = datetime.utcnow()
        self._settled[job.job_id].set()
        self._audit_event(job, "finish", outcome.status.value, {"error": outcome.error})
        logger.info(
            "Job stopped",
            extra={
                "job_id": job.job_id,
                "job_kind": job.kind.value,
                "status": outcome.status.value,
                "processed": job.stats.processed,
                "succeeded": job.stats.succeeded,
                "failed": job.stats.failed,
                "skipped": job.stats.skipped,
            },
        )

    def _promote(self) -> None:
        """Start queued jobs while slots are free. Caller holds the lock."""
        if self._closing:
            return
        while self._admission and self._running_count() < self._max_concurrent:
            job = self._jobs.get(self._admission.popleft())
            if job is None or job.status is not JobStatus.PENDING:
                continue
            self._launch(job)

    def _hold_queued(self) -> int:
        """Pause every job still waiting for a slot. Caller holds the lock."""
        held = 0
        while self._admission:
            job = self._jobs.get(self._admission.popleft())
            if job is None or job.status is not JobStatus.PENDING:
                continue
            self._transition(job, JobStatus.PAUSED, reason="scheduler shutting down")
            self._settled[job.job_id].set()
            held += 1
            try:
                self._checkpoints.mark_status(
                    job.job_key, JobStatus.PAUSED, spec_json=job.spec.model_dump_json()
                )
            except StoreUnavailableError as exc:
                logger.error(
                    "Could not record held lineage",
                    extra={"job_id": job.job_id, "error": str(exc)},
                )
            self._audit_event(job, "pause", job.status.value, {"reason": "shutdown"})
        return held

    def _audit_event(
        self,
        job: Job,
        action: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.record_job_event(
            job_id=job.job_id,
            action=action,
            status=status,
            metadata={"job_kind": job.kind.value, "job_key": job.job_key, **(metadata or {})},
        )
