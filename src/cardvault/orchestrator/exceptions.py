"""Custom exceptions for the job engine."""

from __future__ import annotations

from typing import Optional


class JobEngineError(Exception):
    """Base class for every error raised by the job engine."""

    pass


class AdmissionError(JobEngineError):
    """Raised when a start or resume request cannot be admitted.

    No job is created (or changed) when this is raised.
    """

    pass


class AlreadyRunningError(AdmissionError):
    """Raised when a job of the same kind is already active.

    A kind is active while one of its jobs is pending, running or paused.
    Admitting a second job would let two loops enrich the same records.

    Example:
        Starting an image enrichment job while another one is paused
        raises this exception; resume or cancel the paused job first.
    """

    def __init__(self, kind: str, job_id: Optional[str] = None) -> None:
        self.kind = kind
        self.job_id = job_id
        detail = f" (job {job_id})" if job_id else ""
        super().__init__(f"A {kind} job is already active{detail}")


class AdmissionQueueFullError(AdmissionError):
    """Raised when every slot is busy and the admission queue is full."""

    pass


class JobKindDisabledError(AdmissionError):
    """Raised when the requested job kind is not enabled for this engine."""

    pass


class JobConfigurationError(AdmissionError):
    """Raised when a job spec cannot be run as given.

    Example:
        An ingestion job whose input file does not exist, or an enrichment
        job whose lookup service was not configured.
    """

    pass


class SchedulerClosedError(AdmissionError):
    """Raised when a job is started on a scheduler that is shutting down."""

    pass


class JobNotFoundError(JobEngineError, KeyError):
    """Raised when a job id is unknown to the scheduler.

    Example:
        Pausing a job that was cleared with ``clear_finished`` raises
        this exception.
    """

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "job not found"


class JobStateError(JobEngineError):
    """Raised when a lifecycle call does not fit the job's current status."""

    def __init__(self, job_id: str, status: str, message: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status}: {message}")


class JobNotRunningError(JobStateError):
    """Raised when pausing a job that is not running."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(job_id, status, "only running jobs can be paused")


class JobNotPausedError(JobStateError):
    """Raised when resuming a job that is not paused."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(job_id, status, "only paused jobs can be resumed")


class InvalidStateTransitionError(JobEngineError, ValueError):
    """Raised when an invalid state transition is attempted.

    This exception indicates a violation of the lifecycle rules defined
    in ``VALID_TRANSITIONS``.

    Example:
        Attempting to move a completed job back to running raises this
        exception since completed is terminal.
    """

    pass


class CheckpointRegressionError(JobEngineError, ValueError):
    """Raised when a checkpoint save would move a lineage cursor backwards."""

    def __init__(self, job_key: str, stored: int, attempted: int) -> None:
        self.job_key = job_key
        self.stored = stored
        self.attempted = attempted
        super().__init__(
            f"Checkpoint cursor for {job_key} cannot move from {stored} to {attempted}"
        )


class StoreUnavailableError(JobEngineError):
    """Raised when a backing store cannot serve a request.

    Store implementations translate driver errors (locked database, I/O
    failure) into this exception. It is the only error the workers retry,
    and exhausting those retries is the only job-fatal failure.
    """

    pass


__all__ = [
    "JobEngineError",
    "AdmissionError",
    "AlreadyRunningError",
    "AdmissionQueueFullError",
    "JobKindDisabledError",
    "JobConfigurationError",
    "SchedulerClosedError",
    "JobNotFoundError",
    "JobStateError",
    "JobNotRunningError",
    "JobNotPausedError",
    "InvalidStateTransitionError",
    "CheckpointRegressionError",
    "StoreUnavailableError",
]
