"""Job lifecycle orchestrator — the single place job status changes.

Every status change goes through ``transition``, which:
1. Checks the edge exists in the status graph
2. Checks the actor may drive that edge
3. Checks the job invariants hold for the target status
4. Applies status and field changes with a conditional UPDATE keyed on the
   status it read, so a concurrent change makes it fail instead of overwrite
5. Closes open appointment proposals once a job leaves matched
6. Queues a JobStatusChanged event, dispatched only after commit

``transition`` never commits. The public operations below wrap it in a
unit of work; the quote, scheduling and completion services call it inside
their own units of work.
"""

import logging
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from config import settings
from database import unit_of_work
from errors import (
    AuthorizationError, ConflictError, InvalidStateError, InvalidTransitionError,
    NotFoundError, PreconditionError, ValidationError,
)
from lifecycle import events
from lifecycle.matching import ContractorMatch, MatchPredicate, find_matching_contractors
from lifecycle.state_machine import OPEN, can_transition, check_invariants
from models.enums import JobStatus, ProposalStatus, SheetStatus
from models.models import AppointmentProposal, ContractorTrade, Job, Trade, User, utcnow
from schemas.marketplace import JobCreate

logger = logging.getLogger(__name__)

# Fields covered by the job invariants; only changed through this module
_GUARDED_FIELDS = ("contractor_id", "scheduled_date", "actual_cost", "paid")

_EDITABLE_FIELDS = {"title", "description", "location", "preferred_date", "preferred_time", "photos"}


def _snapshot(job: Job) -> dict[str, Any]:
    return {name: getattr(job, name) for name in _GUARDED_FIELDS}


def _compare_and_set(db: Session, job: Job, expected_status: JobStatus, values: dict[str, Any]) -> None:
    """Write values only if the job still has the status we read."""
    values = {**values, "updated_at": utcnow()}
    result = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.status == expected_status.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Job {job.id} changed while the operation was in progress",
            {"job_id": job.id, "expected_status": expected_status.value},
        )
    db.refresh(job)


def _authorize(job: Job, current: JobStatus, target: JobStatus, actor: User, mutual_agreement: bool) -> None:
    if target == JobStatus.CANCELLED:
        if current in OPEN:
            if actor.id != job.homeowner_id:
                raise AuthorizationError(
                    f"Only the homeowner may cancel job {job.id}",
                    {"job_id": job.id, "actor_id": actor.id},
                )
            return
        # Scheduled: only by agreement of both parties
        if not job.is_party(actor.id):
            raise AuthorizationError(f"User {actor.id} is not a party to job {job.id}", {"job_id": job.id})
        if not mutual_agreement:
            raise InvalidTransitionError(
                job.id, current.value, target.value, "a scheduled job is cancelled only by mutual agreement",
            )
        requested_by = job.cancellation_requested_by
        if requested_by is None or requested_by == actor.id:
            raise PreconditionError(
                f"Job {job.id}: cancellation needs a standing request from the other party",
                {"job_id": job.id, "cancellation_requested_by": requested_by},
            )
        return

    if target == JobStatus.MATCHED:
        if not actor.is_contractor:
            raise AuthorizationError(f"Only a contractor can engage job {job.id}", {"job_id": job.id})
    elif target == JobStatus.IN_PROGRESS:
        if actor.id != job.contractor_id:
            raise AuthorizationError(
                f"Only the assigned contractor can start job {job.id}",
                {"job_id": job.id, "actor_id": actor.id},
            )
    elif not job.is_party(actor.id):
        raise AuthorizationError(f"User {actor.id} is not a party to job {job.id}", {"job_id": job.id})


def _check_aggregate(job: Job, target: JobStatus) -> None:
    """Cross-entity conditions the job sheet must satisfy for work states."""
    sheet = job.job_sheet
    if target == JobStatus.IN_PROGRESS:
        if sheet is None or sheet.check_in_time is None:
            raise PreconditionError(
                f"Job {job.id}: work starts only with a check-in",
                {"job_id": job.id, "missing": "check_in_time"},
            )
    elif target == JobStatus.COMPLETED:
        missing = []
        if sheet is None:
            missing = ["job_sheet"]
        else:
            if sheet.check_out_time is None:
                missing.append("check_out_time")
            if not sheet.contractor_signature:
                missing.append("contractor_signature")
            if not sheet.homeowner_signature:
                missing.append("homeowner_signature")
            if sheet.status != SheetStatus.COMPLETED.value:
                missing.append("job_sheet_completed")
        if missing:
            raise PreconditionError(
                f"Job {job.id}: completion requires {', '.join(missing)}",
                {"job_id": job.id, "missing": missing},
            )


def _close_pending_proposals(db: Session, job: Job) -> None:
    """Proposals only negotiate matched jobs; leaving matched closes any still open."""
    closed = db.execute(
        update(AppointmentProposal)
        .where(
            AppointmentProposal.job_id == job.id,
            AppointmentProposal.status == ProposalStatus.PENDING.value,
        )
        .values(
            status=ProposalStatus.REJECTED.value,
            response_message="Job is no longer open for scheduling",
            responded_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if closed:
        logger.info(f"Job {job.id}: closed {closed} open appointment proposal(s)")


def transition(
    db: Session,
    job: Job,
    target: JobStatus,
    actor: User,
    changes: dict[str, Any] | None = None,
    *,
    mutual_agreement: bool = False,
) -> Job:
    """Move a job along one edge of the status graph. Does not commit."""
    target = JobStatus(target)
    current = JobStatus(job.status)

    if not can_transition(current, target):
        logger.warning(f"Rejected job {job.id} transition {current.value} -> {target.value}")
        raise InvalidTransitionError(job.id, current.value, target.value)

    _authorize(job, current, target, actor, mutual_agreement)

    values = dict(changes or {})
    if target == JobStatus.CANCELLED:
        values.update(contractor_id=None, scheduled_date=None, cancellation_requested_by=None)

    check_invariants(job.id, target, {**_snapshot(job), **values})
    _check_aggregate(job, target)

    values["status"] = target.value
    _compare_and_set(db, job, current, values)
    if current == JobStatus.MATCHED:
        _close_pending_proposals(db, job)

    events.record(db, events.JobStatusChanged(
        job_id=job.id, from_status=current, to_status=target, actor_id=actor.id,
    ))
    logger.info(f"Job {job.id}: {current.value} -> {target.value} (actor {actor.id})")
    return job


def apply_changes(db: Session, job: Job, changes: dict[str, Any]) -> Job:
    """Update fields without a status change, keeping the invariants. Does not commit."""
    current = JobStatus(job.status)
    check_invariants(job.id, current, {**_snapshot(job), **changes})
    _compare_and_set(db, job, current, changes)
    return job


# --- Public operations ---

def get_job(db: Session, job_id: int) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)
    return job


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def create_job(db: Session, homeowner: User, details: JobCreate) -> Job:
    """Create a pending job for a homeowner."""
    if not homeowner.is_homeowner:
        raise AuthorizationError("Only homeowners can create job requests", {"actor_id": homeowner.id})

    missing = []
    if not (details.title or "").strip():
        missing.append("title")
    if details.trade_id is None:
        missing.append("trade_id")
    if not (details.description or "").strip():
        missing.append("description")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

    if db.get(Trade, details.trade_id) is None:
        raise ValidationError(f"Unknown trade: {details.trade_id}", {"trade_id": details.trade_id})

    if len(details.photos) > settings.MAX_JOB_PHOTOS:
        raise ValidationError(
            f"At most {settings.MAX_JOB_PHOTOS} photos per job request",
            {"photos": len(details.photos)},
        )

    with unit_of_work(db):
        job = Job(
            homeowner_id=homeowner.id,
            trade_id=details.trade_id,
            title=details.title.strip(),
            description=details.description.strip(),
            location=details.location,
            preferred_date=details.preferred_date,
            preferred_time=details.preferred_time,
            photos=list(details.photos),
            status=JobStatus.PENDING.value,
        )
        db.add(job)
        db.flush()
        logger.info(f"Job {job.id} created by homeowner {homeowner.id}: {job.title}")

    db.refresh(job)
    return job


def list_jobs_for_actor(db: Session, actor: User, status: JobStatus | None = None, include_open: bool = False) -> list[Job]:
    """
    Jobs visible to a user, most recent first.

    Homeowners see their own requests. Contractors see jobs bound to them
    and, with include_open, pending jobs in their trades they could quote on.
    """
    query = db.query(Job)
    if actor.is_homeowner:
        query = query.filter(Job.homeowner_id == actor.id)
    elif include_open:
        trade_ids = select(ContractorTrade.trade_id).where(ContractorTrade.contractor_id == actor.id)
        query = query.filter(or_(
            Job.contractor_id == actor.id,
            (Job.status == JobStatus.PENDING.value) & Job.trade_id.in_(trade_ids),
        ))
    else:
        query = query.filter(Job.contractor_id == actor.id)

    if status is not None:
        query = query.filter(Job.status == JobStatus(status).value)
    return query.order_by(Job.created_at.desc(), Job.id.desc()).all()


def match_contractors(db: Session, job: Job, predicate: MatchPredicate | None = None) -> list[ContractorMatch]:
    """Candidate contractors for a job. Does not change the job."""
    return find_matching_contractors(db, job, predicate)


def change_status(db: Session, job: Job, target: JobStatus, actor: User, *, mutual_agreement: bool = False) -> Job:
    """Explicit actor-requested status change (patch-status)."""
    with unit_of_work(db):
        transition(db, job, target, actor, mutual_agreement=mutual_agreement)
    return job


def update_fields(db: Session, job: Job, actor: User, changes: dict[str, Any]) -> Job:
    """Homeowner edits to an open job request (patch-fields)."""
    if actor.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner may edit job {job.id}", {"job_id": job.id})
    if JobStatus(job.status) not in OPEN:
        raise InvalidStateError(
            f"Job {job.id} can no longer be edited",
            {"job_id": job.id, "current_status": job.status},
        )

    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}", {"fields": sorted(unknown)})
    for name in ("title", "description"):
        if name in changes and not (changes[name] or "").strip():
            raise ValidationError(f"'{name}' cannot be empty", {"field": name})
    if len(changes.get("photos") or []) > settings.MAX_JOB_PHOTOS:
        raise ValidationError(f"At most {settings.MAX_JOB_PHOTOS} photos per job request")

    with unit_of_work(db):
        apply_changes(db, job, changes)
        logger.info(f"Job {job.id} fields updated: {', '.join(sorted(changes))}")
    return job


def request_cancellation(db: Session, job: Job, actor: User) -> Job:
    """
    One party's request to cancel a scheduled job.

    The first request is recorded; when the other party also requests, the
    job is cancelled by mutual agreement.
    """
    if not job.is_party(actor.id):
        raise AuthorizationError(f"User {actor.id} is not a party to job {job.id}", {"job_id": job.id})
    if JobStatus(job.status) != JobStatus.SCHEDULED:
        raise InvalidStateError(
            f"Cancellation requests apply to scheduled jobs; job {job.id} is '{job.status}'",
            {"job_id": job.id, "current_status": job.status},
        )

    with unit_of_work(db):
        if job.cancellation_requested_by is None:
            apply_changes(db, job, {"cancellation_requested_by": actor.id})
            logger.info(f"Job {job.id}: cancellation requested by {actor.id}")
        elif job.cancellation_requested_by == actor.id:
            raise InvalidStateError(
                f"User {actor.id} already requested cancellation of job {job.id}",
                {"job_id": job.id},
            )
        else:
            transition(db, job, JobStatus.CANCELLED, actor, mutual_agreement=True)
    return job


def record_payment(db: Session, job: Job, actor: User, reference: str) -> Job:
    """Mark a completed job paid once the payment provider has captured funds."""
    if actor.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner pays for job {job.id}", {"job_id": job.id})
    if JobStatus(job.status) != JobStatus.COMPLETED:
        raise InvalidStateError(
            f"Job {job.id} is '{job.status}'; only completed jobs are released for payment",
            {"job_id": job.id, "current_status": job.status},
        )
    if job.paid:
        raise ConflictError(f"Job {job.id} is already paid", {"job_id": job.id})

    with unit_of_work(db):
        apply_changes(db, job, {"paid": True, "payment_reference": reference})
        logger.info(f"Job {job.id} paid: {job.actual_cost} {settings.CURRENCY} (ref {reference})")
    return job
