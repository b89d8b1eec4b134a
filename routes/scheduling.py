"""Schedule slot and appointment proposal routes."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from lifecycle.orchestrator import get_job
from models.models import User
from routes.deps import get_actor
from schemas.marketplace import (
    JobResponse, ProposalCreate, ProposalRespond, ProposalResponse, SlotBook, SlotCreate, SlotResponse, SlotUpdate,
)
from services import scheduling

slots_router = APIRouter(prefix="/api/schedule-slots", tags=["scheduling"])
proposals_router = APIRouter(prefix="/api/appointment-proposals", tags=["scheduling"])


# --- Slots ---

@slots_router.post("", response_model=SlotResponse, status_code=201)
def create_slot(body: SlotCreate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    return scheduling.create_slot(
        db, actor, body.start_time, body.end_time,
        title=body.title, notes=body.notes, location=body.location,
    )


@slots_router.get("/contractor/{contractor_id}", response_model=list[SlotResponse])
def list_slots(contractor_id: int, db: Session = Depends(get_db)):
    return scheduling.list_slots(db, contractor_id)


@slots_router.get("/available/contractor/{contractor_id}", response_model=list[SlotResponse])
def list_available_slots(contractor_id: int, after: datetime | None = None, db: Session = Depends(get_db)):
    return scheduling.list_available_slots(db, contractor_id, after=after)


@slots_router.post("/{slot_id}/book", response_model=JobResponse)
def book_slot(slot_id: int, body: SlotBook, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    slot = scheduling.get_slot(db, slot_id)
    job = get_job(db, body.job_id)
    return scheduling.book_slot(db, slot, job, actor)


@slots_router.patch("/{slot_id}", response_model=SlotResponse)
def update_slot(slot_id: int, body: SlotUpdate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    slot = scheduling.get_slot(db, slot_id)
    return scheduling.update_slot(db, slot, actor, body.model_dump(exclude_unset=True))


@slots_router.delete("/{slot_id}", status_code=204)
def delete_slot(slot_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    scheduling.delete_slot(db, scheduling.get_slot(db, slot_id), actor)


# --- Proposals ---

@proposals_router.post("", response_model=ProposalResponse, status_code=201)
def create_proposal(body: ProposalCreate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, body.job_id)
    return scheduling.propose(
        db, job, actor, body.start_time, body.end_time,
        message=body.message, slot_id=body.slot_id,
    )


@proposals_router.get("", response_model=list[ProposalResponse])
def list_proposals(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    return scheduling.list_proposals(db, get_job(db, job_id), actor)


@proposals_router.post("/{proposal_id}/respond", response_model=ProposalResponse)
def respond_to_proposal(
    proposal_id: int,
    body: ProposalRespond,
    actor: User = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Returns the answered proposal, or the new pending one for a counter."""
    proposal = scheduling.get_proposal(db, proposal_id)
    return scheduling.respond(
        db, proposal, actor, body.response,
        message=body.message, counter_start=body.counter_start, counter_end=body.counter_end,
    )
