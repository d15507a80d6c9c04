"""State machine validation for the job lifecycle.

Every status change of a job goes through ``StateMachineValidator`` so
illegal moves (for example resuming a cancelled job) surface as errors
instead of silently corrupting the job table, and legal moves leave an
audit trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from .exceptions import InvalidStateTransitionError
from .models import JobStatus

if TYPE_CHECKING:
    from .audit import AuditLogger


logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.PENDING: {
        JobStatus.RUNNING,  # Slot acquired
        JobStatus.PAUSED,  # Held when the scheduler shuts down
        JobStatus.CANCELLED,  # Cancelled while queued
    },
    JobStatus.RUNNING: {
        JobStatus.PAUSED,  # Operator pause or persistent throttling
        JobStatus.COMPLETED,  # Nothing left or item cap reached
        JobStatus.CANCELLED,  # Operator cancel
        JobStatus.FAILED,  # Store unavailable after retries
    },
    JobStatus.PAUSED: {
        JobStatus.RUNNING,  # Resumed with a free slot
        JobStatus.PENDING,  # Resumed while every slot is busy
        JobStatus.CANCELLED,
    },
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class StateTransition:
    """Records a state transition attempt."""

    job_id: str
    from_status: JobStatus
    to_status: JobStatus
    timestamp: datetime
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        return self.to_status in VALID_TRANSITIONS.get(self.from_status, set())

    def is_idempotent(self) -> bool:
        return self.from_status == self.to_status


class StateMachineValidator:
    """Validates lifecycle transitions and keeps their history.

    Same-state transitions are tolerated and logged at debug level; any
    other transition missing from ``VALID_TRANSITIONS`` raises.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None) -> None:
        self._audit = audit_logger
        self._history: List[StateTransition] = []

    def validate_transition(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """Validate a transition before it is applied.

        Args:
            job_id: Job identifier
            from_status: Current job status
            to_status: Desired job status
            reason: Optional human readable reason
            metadata: Extra context recorded with the audit event

        Returns:
            The recorded transition

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        transition = StateTransition(
            job_id=job_id,
            from_status=from_status,
            to_status=to_status,
            timestamp=datetime.utcnow(),
            reason=reason,
            metadata=dict(metadata or {}),
        )

        if transition.is_idempotent():
            logger.debug(
                "Idempotent state transition",
                extra={"job_id": job_id, "status": from_status.value},
            )
            return transition

        if not transition.is_valid():
            logger.error(
                "Invalid state transition",
                extra={
                    "job_id": job_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            raise InvalidStateTransitionError(
                f"Invalid transition: {from_status.value} -> {to_status.value}"
            )

        self._history.append(transition)

        if self._audit:
            from .audit import AuditEvent

            self._audit.record(
                AuditEvent(
                    job_id=job_id,
                    source="state_machine",
                    action=f"transition_{from_status.value}_to_{to_status.value}",
                    status="validated",
                    timestamp=transition.timestamp,
                    metadata={
                        "from_status": from_status.value,
                        "to_status": to_status.value,
                        "reason": reason,
                        **transition.metadata,
                    },
                )
            )

        return transition

    def history(self, job_id: Optional[str] = None) -> List[StateTransition]:
        """Return recorded transitions, optionally for one job."""
        if job_id is None:
            return list(self._history)
        return [t for t in self._history if t.job_id == job_id]
