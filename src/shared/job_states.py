"""Job lifecycle transition rules.

    queued ──► processing ──► completed
                 │   ▲
                 ▼   │ (redelivery)
               failed
    queued/processing/failed ──► permanently_failed   (dead-letter path only)

``processing → processing`` is allowed because a worker that crashed
mid-run leaves the record in ``processing`` and the redelivered message
starts the run again.
"""

from .exceptions import InvalidTransitionError
from .models import JobStatus

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.PERMANENTLY_FAILED}),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.PERMANENTLY_FAILED,
        }
    ),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING, JobStatus.PERMANENTLY_FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.PERMANENTLY_FAILED: frozenset(),
}


def allowed_predecessors(status: JobStatus) -> list[JobStatus]:
    """Return the statuses from which ``status`` may be entered."""
    return sorted(
        (source for source, targets in _ALLOWED_TRANSITIONS.items() if status in targets),
        key=lambda s: s.value,
    )


def can_transition(old_status: JobStatus, new_status: JobStatus) -> bool:
    return new_status in _ALLOWED_TRANSITIONS.get(old_status, frozenset())


def ensure_transition(job_id: str, old_status: JobStatus, new_status: JobStatus) -> None:
    """Validate a transition according to lifecycle rules.

    Raises:
        InvalidTransitionError: If ``new_status`` is not reachable from ``old_status``
    """
    if not can_transition(old_status, new_status):
        raise InvalidTransitionError(job_id, new_status.value, old_status.value)
