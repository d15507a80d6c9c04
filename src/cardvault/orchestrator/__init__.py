"""Job engine package: scheduling, workers, checkpoints and pacing."""

from .checkpoint import CheckpointStore
from .crash_recovery import CrashRecoveryManager, CrashRecoveryReport, RecoveryStateTracker
from .exceptions import (
    AdmissionError,
    AdmissionQueueFullError,
    AlreadyRunningError,
    CheckpointRegressionError,
    InvalidStateTransitionError,
    JobConfigurationError,
    JobEngineError,
    JobKindDisabledError,
    JobNotFoundError,
    JobNotPausedError,
    JobNotRunningError,
    StoreUnavailableError,
)
from .models import Checkpoint, JobConfig, JobKind, JobSnapshot, JobSpec, JobStatus
from .rate_limiter import RateLimiter
from .retry_policy import RetryPolicy, RetryStrategy
from .scheduler import JobScheduler
from .state_machine import VALID_TRANSITIONS, StateMachineValidator, StateTransition
from .status import collect_status_report

__all__ = [
    "CheckpointStore",
    "CrashRecoveryManager",
    "CrashRecoveryReport",
    "RecoveryStateTracker",
    "AdmissionError",
    "AdmissionQueueFullError",
    "AlreadyRunningError",
    "CheckpointRegressionError",
    "InvalidStateTransitionError",
    "JobConfigurationError",
    "JobEngineError",
    "JobKindDisabledError",
    "JobNotFoundError",
    "JobNotPausedError",
    "JobNotRunningError",
    "StoreUnavailableError",
    "Checkpoint",
    "JobConfig",
    "JobKind",
    "JobSnapshot",
    "JobSpec",
    "JobStatus",
    "RateLimiter",
    "RetryPolicy",
    "RetryStrategy",
    "JobScheduler",
    "VALID_TRANSITIONS",
    "StateMachineValidator",
    "StateTransition",
    "collect_status_report",
]
