"""Job status graph and the per-status Job invariants.

All callers go through this table instead of comparing status strings.
"""

from typing import Any, Mapping

from errors import PreconditionError
from models.enums import JobStatus

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.MATCHED, JobStatus.CANCELLED}),
    JobStatus.MATCHED: frozenset({JobStatus.SCHEDULED, JobStatus.CANCELLED}),
    JobStatus.SCHEDULED: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Statuses in which a contractor must be bound to the job
CONTRACTOR_BOUND = frozenset({
    JobStatus.MATCHED, JobStatus.SCHEDULED, JobStatus.IN_PROGRESS, JobStatus.COMPLETED,
})

# Statuses in which the appointment time must be set
DATE_BOUND = frozenset({JobStatus.SCHEDULED, JobStatus.IN_PROGRESS, JobStatus.COMPLETED})

TERMINAL = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Homeowner may still edit the request and cancel unilaterally
OPEN = frozenset({JobStatus.PENDING, JobStatus.MATCHED})


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[JobStatus(current)]


def invariant_violations(status: JobStatus, fields: Mapping[str, Any]) -> list[str]:
    """
    List every Job invariant the given field values break for a status.

    Invariants:
    - contractor_id is set iff status is matched/scheduled/in_progress/completed
    - scheduled_date is set iff status is scheduled/in_progress/completed
    - actual_cost is set only when completed
    - paid may be true only when completed
    """
    status = JobStatus(status)
    violations = []

    has_contractor = fields.get("contractor_id") is not None
    if status in CONTRACTOR_BOUND and not has_contractor:
        violations.append(f"'{status.value}' requires a contractor")
    if status not in CONTRACTOR_BOUND and has_contractor:
        violations.append(f"'{status.value}' must not have a contractor")

    has_date = fields.get("scheduled_date") is not None
    if status in DATE_BOUND and not has_date:
        violations.append(f"'{status.value}' requires a scheduled date")
    if status not in DATE_BOUND and has_date:
        violations.append(f"'{status.value}' must not have a scheduled date")

    if fields.get("actual_cost") is not None and status != JobStatus.COMPLETED:
        violations.append("actual cost may only be set on a completed job")
    if fields.get("paid") and status != JobStatus.COMPLETED:
        violations.append("only a completed job may be paid")

    return violations


def check_invariants(job_id: Any, status: JobStatus, fields: Mapping[str, Any]) -> None:
    """Raise PreconditionError naming the first unmet invariant."""
    violations = invariant_violations(status, fields)
    if violations:
        raise PreconditionError(
            f"Job {job_id}: {violations[0]}",
            {"job_id": job_id, "status": JobStatus(status).value, "violations": violations},
        )
