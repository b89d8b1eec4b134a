"""Job request routes — create, read, edit and move jobs through their lifecycle."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from errors import AuthorizationError
from lifecycle import orchestrator
from models.enums import JobStatus
from models.models import User
from routes.deps import get_actor
from schemas.marketplace import (
    ContractorMatchResponse, JobCreate, JobResponse, JobStatusUpdate, JobUpdate, PaymentRecord,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
def create_job(body: JobCreate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    return orchestrator.create_job(db, actor, body)


@router.get("", response_model=list[JobResponse])
def list_jobs(
    status: JobStatus | None = None,
    include_open: bool = False,
    actor: User = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Homeowners get their requests; contractors their jobs, plus open ones in their trades on request."""
    return orchestrator.list_jobs_for_actor(db, actor, status=status, include_open=include_open)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = orchestrator.get_job(db, job_id)
    # Pending jobs are visible to contractors so they can quote
    if not job.is_party(actor.id) and not (actor.is_contractor and job.status == JobStatus.PENDING.value):
        logger.warning(f"User {actor.id} denied access to job {job_id}")
        raise AuthorizationError(f"You are not authorized to view job {job_id}", {"job_id": job_id})
    return job


@router.patch("/{job_id}", response_model=JobResponse)
def update_job(job_id: int, body: JobUpdate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = orchestrator.get_job(db, job_id)
    return orchestrator.update_fields(db, job, actor, body.model_dump(exclude_unset=True))


@router.post("/{job_id}/status", response_model=JobResponse)
def change_status(job_id: int, body: JobStatusUpdate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    """
    Explicit status change. Only edges without their own workflow succeed
    here (cancellation); the others are driven by quotes, scheduling and
    the job sheet, and fail their preconditions when requested directly.
    """
    job = orchestrator.get_job(db, job_id)
    return orchestrator.change_status(db, job, body.status, actor, mutual_agreement=body.mutual_agreement)


@router.post("/{job_id}/cancellation-request", response_model=JobResponse)
def request_cancellation(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = orchestrator.get_job(db, job_id)
    return orchestrator.request_cancellation(db, job, actor)


@router.get("/{job_id}/matching-contractors", response_model=list[ContractorMatchResponse])
def matching_contractors(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = orchestrator.get_job(db, job_id)
    if actor.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner can search contractors for job {job_id}", {"job_id": job_id})

    matches = orchestrator.match_contractors(db, job)
    logger.info(f"Job {job_id}: {len(matches)} matching contractor(s)")
    return [
        ContractorMatchResponse(
            contractor_id=match.contractor.id,
            name=f"{match.contractor.first_name} {match.contractor.last_name}".strip(),
            city=match.contractor.city,
            average_rating=match.contractor.average_rating or 0.0,
            review_count=match.contractor.review_count or 0,
            score=match.score,
            available_soon=match.available_soon,
        )
        for match in matches
    ]


@router.post("/{job_id}/payment", response_model=JobResponse)
def record_payment(job_id: int, body: PaymentRecord, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    """Called once the payment provider confirms the charge."""
    job = orchestrator.get_job(db, job_id)
    return orchestrator.record_payment(db, job, actor, body.reference)
