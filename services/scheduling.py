"""Scheduling negotiator — contractor slots and appointment proposals.

Two booking paths lead to the same result (job scheduled, time set):
- Slot booking: the homeowner claims a contractor's declared availability
- Proposal negotiation: either party proposes a time, the other accepts,
  rejects or counters

Both paths need an accepted quote: the quote fixes who does the work, the
negotiation fixes when.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import (
    AuthorizationError, ConflictError, InvalidStateError, NotFoundError, PreconditionError, ValidationError,
)
from lifecycle import orchestrator
from models.enums import JobStatus, ProposalStatus
from models.models import AppointmentProposal, Job, ScheduleSlot, User, utcnow
from services.quotes import get_accepted_quote

logger = logging.getLogger(__name__)

_RESPONSES = {ProposalStatus.ACCEPTED, ProposalStatus.REJECTED, ProposalStatus.COUNTERED}
_SLOT_FIELDS = {"start_time", "end_time", "title", "notes", "location"}


def _require_window(start: datetime, end: datetime) -> None:
    if start is None or end is None:
        raise ValidationError("Both start and end time are required")
    if end <= start:
        raise ValidationError(
            "End time must be after start time",
            {"start_time": start.isoformat(), "end_time": end.isoformat()},
        )


def _require_negotiable(db: Session, job: Job) -> None:
    """Job is matched and its contractor is bound by an accepted quote."""
    if JobStatus(job.status) != JobStatus.MATCHED:
        raise InvalidStateError(
            f"Job {job.id} is '{job.status}'; only matched jobs can be scheduled",
            {"job_id": job.id, "current_status": job.status},
        )
    if get_accepted_quote(db, job) is None:
        raise PreconditionError(
            f"Job {job.id} has no accepted quote yet",
            {"job_id": job.id, "missing": "accepted_quote"},
        )


# --- Slots ---

def get_slot(db: Session, slot_id: int) -> ScheduleSlot:
    slot = db.get(ScheduleSlot, slot_id)
    if slot is None:
        raise NotFoundError("Schedule slot", slot_id)
    return slot


def _require_no_overlap(
    db: Session, contractor_id: int, start: datetime, end: datetime, exclude_id: int | None = None,
) -> None:
    """Windows of one contractor never overlap."""
    query = db.query(ScheduleSlot).filter(
        ScheduleSlot.contractor_id == contractor_id,
        ScheduleSlot.start_time < end,
        ScheduleSlot.end_time > start,
    )
    if exclude_id is not None:
        query = query.filter(ScheduleSlot.id != exclude_id)
    overlapping = query.first()
    if overlapping is not None:
        raise ValidationError(
            f"Slot overlaps existing slot {overlapping.id}",
            {
                "slot_id": overlapping.id,
                "start_time": overlapping.start_time.isoformat(),
                "end_time": overlapping.end_time.isoformat(),
            },
        )


def create_slot(
    db: Session,
    contractor: User,
    start: datetime,
    end: datetime,
    title: str | None = None,
    notes: str | None = None,
    location: str | None = None,
) -> ScheduleSlot:
    """Declare an availability window. Windows of one contractor never overlap."""
    if not contractor.is_contractor:
        raise AuthorizationError("Only contractors can create schedule slots", {"actor_id": contractor.id})
    _require_window(start, end)
    _require_no_overlap(db, contractor.id, start, end)

    with unit_of_work(db):
        slot = ScheduleSlot(
            contractor_id=contractor.id,
            start_time=start,
            end_time=end,
            is_booked=False,
            title=title,
            notes=notes,
            location=location,
        )
        db.add(slot)
        db.flush()
        logger.info(f"Slot {slot.id} created for contractor {contractor.id}: {start} - {end}")
    return slot


def list_slots(db: Session, contractor_id: int) -> list[ScheduleSlot]:
    return db.query(ScheduleSlot).filter(
        ScheduleSlot.contractor_id == contractor_id
    ).order_by(ScheduleSlot.start_time).all()


def list_available_slots(db: Session, contractor_id: int, after: datetime | None = None) -> list[ScheduleSlot]:
    """Open slots of a contractor, optionally only those starting after a time."""
    query = db.query(ScheduleSlot).filter(
        ScheduleSlot.contractor_id == contractor_id,
        ScheduleSlot.is_booked.is_(False),
    )
    if after is not None:
        query = query.filter(ScheduleSlot.start_time > after)
    return query.order_by(ScheduleSlot.start_time).all()


def update_slot(db: Session, slot: ScheduleSlot, actor: User, changes: dict[str, Any]) -> ScheduleSlot:
    """Edit an open slot's window or details. Booked slots are fixed."""
    if slot.contractor_id != actor.id:
        raise AuthorizationError("You can only update your own schedule slots", {"slot_id": slot.id})
    unknown = set(changes) - _SLOT_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}", {"fields": sorted(unknown)})
    if slot.is_booked:
        raise ConflictError(f"Slot {slot.id} is booked and cannot be changed", {"slot_id": slot.id})
    if not changes:
        return slot

    start = changes.get("start_time", slot.start_time)
    end = changes.get("end_time", slot.end_time)
    if start is None or end is None:
        raise ValidationError("A slot needs both a start and an end time", {"slot_id": slot.id})
    _require_window(start, end)
    _require_no_overlap(db, slot.contractor_id, start, end, exclude_id=slot.id)

    with unit_of_work(db):
        result = db.execute(
            update(ScheduleSlot)
            .where(ScheduleSlot.id == slot.id, ScheduleSlot.is_booked.is_(False))
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Slot {slot.id} is booked and cannot be changed", {"slot_id": slot.id})
        db.refresh(slot)
        logger.info(f"Slot {slot.id} updated by contractor {actor.id}: {', '.join(sorted(changes))}")
    return slot


def delete_slot(db: Session, slot: ScheduleSlot, actor: User) -> None:
    """Withdraw an open slot. Booked slots stay as the record of the booking."""
    if slot.contractor_id != actor.id:
        raise AuthorizationError("You can only delete your own schedule slots", {"slot_id": slot.id})

    slot_id = slot.id
    with unit_of_work(db):
        result = db.execute(
            delete(ScheduleSlot)
            .where(ScheduleSlot.id == slot_id, ScheduleSlot.is_booked.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Slot {slot_id} is booked and cannot be deleted", {"slot_id": slot_id})
        db.expunge(slot)
    logger.info(f"Slot {slot_id} deleted by contractor {actor.id}")


def book_slot(db: Session, slot: ScheduleSlot, job: Job, actor: User) -> Job:
    """
    Book a slot for a job.

    Claiming the slot is a compare-and-swap on is_booked, so of two
    homeowners racing for the same slot exactly one wins; the other gets
    ConflictError and the slot stays bound to the winner.
    """
    if actor.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner can book a slot for job {job.id}", {"job_id": job.id})
    if slot.is_booked:
        raise ConflictError(f"Slot {slot.id} is no longer available", {"slot_id": slot.id})
    _require_negotiable(db, job)

    accepted = get_accepted_quote(db, job)
    if accepted.contractor_id != slot.contractor_id:
        raise PreconditionError(
            f"Slot {slot.id} belongs to contractor {slot.contractor_id}, "
            f"but job {job.id} was awarded to contractor {accepted.contractor_id}",
            {"slot_id": slot.id, "job_id": job.id},
        )

    with unit_of_work(db):
        result = db.execute(
            update(ScheduleSlot)
            .where(ScheduleSlot.id == slot.id, ScheduleSlot.is_booked.is_(False))
            .values(is_booked=True, job_id=job.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Slot {slot.id}: lost booking race for job {job.id}")
            raise ConflictError(f"Slot {slot.id} is no longer available", {"slot_id": slot.id})

        orchestrator.transition(db, job, JobStatus.SCHEDULED, actor, {
            "scheduled_date": slot.start_time,
            "contractor_id": slot.contractor_id,
        })
        logger.info(f"Slot {slot.id} booked for job {job.id} at {slot.start_time}")
    return job


# --- Proposals ---

def get_proposal(db: Session, proposal_id: int) -> AppointmentProposal:
    proposal = db.get(AppointmentProposal, proposal_id)
    if proposal is None:
        raise NotFoundError("Appointment proposal", proposal_id)
    return proposal


def get_pending_proposal(db: Session, job: Job) -> AppointmentProposal | None:
    return db.query(AppointmentProposal).filter(
        AppointmentProposal.job_id == job.id,
        AppointmentProposal.status == ProposalStatus.PENDING.value,
    ).first()


def _insert_proposal(db: Session, **fields) -> AppointmentProposal:
    proposal = AppointmentProposal(status=ProposalStatus.PENDING.value, **fields)
    db.add(proposal)
    try:
        db.flush()
    except IntegrityError:
        raise ConflictError(
            f"Job {fields['job_id']} already has a pending proposal",
            {"job_id": fields["job_id"]},
        )
    return proposal


def propose(
    db: Session,
    job: Job,
    proposer: User,
    start: datetime,
    end: datetime,
    message: str | None = None,
    slot_id: int | None = None,
) -> AppointmentProposal:
    """Propose an appointment time. At most one proposal per job is pending."""
    if not job.is_party(proposer.id):
        raise AuthorizationError(
            f"You are not authorized to propose times for job {job.id}",
            {"job_id": job.id, "actor_id": proposer.id},
        )
    _require_negotiable(db, job)
    _require_window(start, end)

    pending = get_pending_proposal(db, job)
    if pending is not None:
        raise InvalidStateError(
            f"Job {job.id} already has pending proposal {pending.id}",
            {"job_id": job.id, "proposal_id": pending.id},
        )

    with unit_of_work(db):
        proposal = _insert_proposal(
            db,
            job_id=job.id,
            proposer_id=proposer.id,
            start_time=start,
            end_time=end,
            message=message,
            slot_id=slot_id,
        )
        logger.info(f"Proposal {proposal.id}: user {proposer.id} proposed {start} - {end} for job {job.id}")
    return proposal


def respond(
    db: Session,
    proposal: AppointmentProposal,
    responder: User,
    response: ProposalStatus,
    message: str | None = None,
    counter_start: datetime | None = None,
    counter_end: datetime | None = None,
) -> AppointmentProposal:
    """
    Answer a pending proposal.

    accepted  -> job scheduled at the proposed start
    rejected  -> nothing else; a new proposal may be made
    countered -> this proposal closes and a new pending one from the
                 responder, with the counter times, opens in its place

    Returns the proposal that is pending afterwards for a counter, otherwise
    the answered proposal.
    """
    response = ProposalStatus(response)
    if response not in _RESPONSES:
        raise ValidationError(f"Invalid response '{response.value}'", {"allowed": sorted(r.value for r in _RESPONSES)})

    job = orchestrator.get_job(db, proposal.job_id)
    if not job.is_party(responder.id):
        raise AuthorizationError(
            f"You are not authorized to respond to proposal {proposal.id}",
            {"proposal_id": proposal.id},
        )
    if responder.id == proposal.proposer_id:
        raise AuthorizationError(
            f"Proposal {proposal.id} must be answered by the other party",
            {"proposal_id": proposal.id},
        )
    if proposal.status != ProposalStatus.PENDING.value:
        raise InvalidStateError(
            f"Proposal {proposal.id} is '{proposal.status}'",
            {"proposal_id": proposal.id, "current_status": proposal.status},
        )
    if response in (ProposalStatus.ACCEPTED, ProposalStatus.COUNTERED):
        _require_negotiable(db, job)
    if response == ProposalStatus.COUNTERED:
        _require_window(counter_start, counter_end)

    with unit_of_work(db):
        result = db.execute(
            update(AppointmentProposal)
            .where(
                AppointmentProposal.id == proposal.id,
                AppointmentProposal.status == ProposalStatus.PENDING.value,
            )
            .values(
                status=response.value,
                responder_id=responder.id,
                response_message=message,
                responded_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Proposal {proposal.id} was already answered", {"proposal_id": proposal.id})

        outcome = proposal
        if response == ProposalStatus.ACCEPTED:
            orchestrator.transition(db, job, JobStatus.SCHEDULED, responder, {"scheduled_date": proposal.start_time})
        elif response == ProposalStatus.COUNTERED:
            outcome = _insert_proposal(
                db,
                job_id=job.id,
                proposer_id=responder.id,
                start_time=counter_start,
                end_time=counter_end,
                message=message,
                previous_id=proposal.id,
            )

        logger.info(f"Proposal {proposal.id} {response.value} by user {responder.id} (job {job.id})")
    return outcome


def list_proposals(db: Session, job: Job, actor: User) -> list[AppointmentProposal]:
    if not job.is_party(actor.id):
        raise AuthorizationError(
            f"You are not authorized to view appointment proposals for job {job.id}",
            {"job_id": job.id},
        )
    return db.query(AppointmentProposal).filter(
        AppointmentProposal.job_id == job.id
    ).order_by(AppointmentProposal.id).all()
