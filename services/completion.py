"""Completion tracker — on-site check-in/out, work record and sign-off.

Sheet states: not_started -> in_progress -> completed. A job reaches
``completed`` only from ``_complete_if_ready``, once the sheet has a
check-out and both signatures.
"""

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from database import unit_of_work
from errors import (
    AuthorizationError, InvalidStateError, LocationUnavailableError, NotFoundError, ValidationError,
)
from lifecycle import orchestrator
from models.enums import JobStatus, SheetStatus, SignatureRole
from models.models import Job, JobSheet, User, utcnow
from services.capabilities import LocationProvider, SignatureCapture

logger = logging.getLogger(__name__)

# A sheet may be created or changed only while its job is in one of these
_SHEET_EDITABLE = {JobStatus.SCHEDULED, JobStatus.IN_PROGRESS}


def _require_contractor(job: Job, actor: User) -> None:
    if job.contractor_id is None or actor.id != job.contractor_id:
        raise AuthorizationError(
            f"Only the assigned contractor can do this for job {job.id}",
            {"job_id": job.id, "actor_id": actor.id},
        )


def _require_editable(job: Job, sheet: JobSheet | None = None) -> None:
    if JobStatus(job.status) not in _SHEET_EDITABLE:
        raise InvalidStateError(
            f"Job {job.id} is '{job.status}'; its job sheet cannot be changed",
            {"job_id": job.id, "current_status": job.status},
        )
    if sheet is not None and sheet.status == SheetStatus.COMPLETED.value:
        raise InvalidStateError(
            f"Job sheet {sheet.id} is already completed",
            {"job_sheet_id": sheet.id, "current_status": sheet.status},
        )


def _require_signer(job: Job, actor: User, role: SignatureRole) -> None:
    if role == SignatureRole.CONTRACTOR:
        _require_contractor(job, actor)
    elif actor.id != job.homeowner_id:
        raise AuthorizationError(
            f"Only the homeowner can sign as homeowner for job {job.id}",
            {"job_id": job.id, "actor_id": actor.id},
        )


def _locate(provider: LocationProvider, job: Job, action: str) -> dict:
    """Mandatory geolocation; a denial fails the whole operation."""
    point = provider.current_location()
    if point is None:
        logger.warning(f"Job {job.id}: {action} without a location")
        raise LocationUnavailableError(
            f"A location is required to {action}",
            {"job_id": job.id, "action": action},
        )
    return point.model_dump()


def _new_sheet(db: Session, job: Job) -> JobSheet:
    # Built through the relationship so job.job_sheet is set before the flush
    sheet = JobSheet(
        job=job,
        contractor_id=job.contractor_id,
        status=SheetStatus.NOT_STARTED.value,
        photos=[],
        additional_costs=0,
    )
    db.add(sheet)
    db.flush()
    return sheet


def _claim_sheet(db: Session, sheet: JobSheet) -> None:
    """
    Take the sheet row for this transaction and reload it. Writes that
    accumulate onto the sheet, and the completion check, then see what
    other sessions committed before us. Does not commit.
    """
    result = db.execute(
        update(JobSheet)
        .where(JobSheet.id == sheet.id, JobSheet.status != SheetStatus.COMPLETED.value)
        .values(updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError(
            f"Job sheet {sheet.id} is already completed",
            {"job_sheet_id": sheet.id, "current_status": SheetStatus.COMPLETED.value},
        )
    db.refresh(sheet)
    db.refresh(sheet.job)


def _complete_if_ready(db: Session, sheet: JobSheet, job: Job, actor: User) -> bool:
    """Complete sheet and job once check-out and both signatures are present."""
    if sheet.check_out_time is None or not sheet.contractor_signature or not sheet.homeowner_signature:
        return False
    if JobStatus(job.status) != JobStatus.IN_PROGRESS:
        return False

    sheet.status = SheetStatus.COMPLETED.value
    db.flush()
    actual_cost = (job.estimated_cost or 0) + (sheet.additional_costs or 0)
    orchestrator.transition(db, job, JobStatus.COMPLETED, actor, {"actual_cost": actual_cost})
    logger.info(f"Job {job.id} signed off by both parties; actual cost {actual_cost} {settings.CURRENCY}")
    return True


def get_sheet(db: Session, sheet_id: int) -> JobSheet:
    sheet = db.get(JobSheet, sheet_id)
    if sheet is None:
        raise NotFoundError("Job sheet", sheet_id)
    return sheet


def get_sheet_for_job(db: Session, job: Job, actor: User) -> JobSheet:
    if not job.is_party(actor.id):
        raise AuthorizationError(f"You are not authorized to view the job sheet for job {job.id}", {"job_id": job.id})
    if job.job_sheet is None:
        raise NotFoundError("Job sheet for job", job.id)
    return job.job_sheet


def authorize_update(
    sheet: JobSheet,
    actor: User,
    records_work: bool = False,
    signature_role: SignatureRole | None = None,
) -> None:
    """
    Check an update before anything is stored for it: the sheet must be
    editable, work is the contractor's and a signature the named party's.
    """
    job = sheet.job
    _require_editable(job, sheet)
    if records_work:
        _require_contractor(job, actor)
    if signature_role is not None:
        _require_signer(job, actor, SignatureRole(signature_role))


def open_sheet(db: Session, job: Job, actor: User) -> JobSheet:
    """Return the job's sheet, creating an empty one if there is none yet."""
    _require_contractor(job, actor)
    _require_editable(job)
    if job.job_sheet is not None:
        return job.job_sheet

    with unit_of_work(db):
        sheet = _new_sheet(db, job)
        logger.info(f"Job sheet {sheet.id} opened for job {job.id}")
    return sheet


def check_in(
    db: Session,
    job: Job,
    contractor: User,
    location_provider: LocationProvider,
    now: datetime | None = None,
) -> JobSheet:
    """Contractor arrives on site: record time and place, job -> in_progress."""
    if JobStatus(job.status) != JobStatus.SCHEDULED:
        raise InvalidStateError(
            f"Check-in needs a scheduled job; job {job.id} is '{job.status}'",
            {"job_id": job.id, "current_status": job.status},
        )
    _require_contractor(job, contractor)
    location = _locate(location_provider, job, "check in")
    now = now or utcnow()

    with unit_of_work(db):
        sheet = job.job_sheet or _new_sheet(db, job)
        sheet.check_in_time = now
        sheet.check_in_location = location
        sheet.status = SheetStatus.IN_PROGRESS.value
        db.flush()

        orchestrator.transition(db, job, JobStatus.IN_PROGRESS, contractor)
        logger.info(
            f"Job {job.id}: contractor {contractor.id} checked in at "
            f"({location['latitude']}, {location['longitude']})"
        )
    return sheet


def check_out(
    db: Session,
    job: Job,
    contractor: User,
    location_provider: LocationProvider,
    now: datetime | None = None,
) -> JobSheet:
    """
    Contractor leaves site. The job stays in_progress until both parties
    have signed; if they already have, it completes here.
    """
    if JobStatus(job.status) != JobStatus.IN_PROGRESS:
        raise InvalidStateError(
            f"Check-out needs a job in progress; job {job.id} is '{job.status}'",
            {"job_id": job.id, "current_status": job.status},
        )
    _require_contractor(job, contractor)

    sheet = job.job_sheet
    if sheet is None or sheet.check_in_time is None:
        raise InvalidStateError(f"Job {job.id} has no check-in", {"job_id": job.id})
    if sheet.check_out_time is not None:
        raise InvalidStateError(
            f"Job {job.id} is already checked out",
            {"job_id": job.id, "check_out_time": sheet.check_out_time.isoformat()},
        )

    location = _locate(location_provider, job, "check out")
    now = now or utcnow()
    if now <= sheet.check_in_time:
        raise ValidationError(
            "Check-out time must be after check-in time",
            {"check_in_time": sheet.check_in_time.isoformat(), "check_out_time": now.isoformat()},
        )

    with unit_of_work(db):
        _claim_sheet(db, sheet)
        if sheet.check_out_time is not None:
            raise InvalidStateError(f"Job {job.id} is already checked out", {"job_id": job.id})
        sheet.check_out_time = now
        sheet.check_out_location = location
        if not sheet.time_spent:
            minutes = int((now - sheet.check_in_time).total_seconds() // 60)
            sheet.time_spent = f"{minutes} min"
        db.flush()
        logger.info(f"Job {job.id}: contractor {contractor.id} checked out after {sheet.time_spent}")
        _complete_if_ready(db, sheet, job, contractor)
    return sheet


def record_work(
    db: Session,
    sheet: JobSheet,
    actor: User,
    notes: str | None = None,
    materials: str | None = None,
    time_spent: str | None = None,
    additional_costs: int | None = None,
    photos: list[str] | None = None,
) -> JobSheet:
    """Add to the work record. Notes, materials, costs and photos accumulate."""
    job = sheet.job
    _require_contractor(job, actor)
    _require_editable(job, sheet)

    if additional_costs is not None and (not isinstance(additional_costs, int) or additional_costs < 0):
        raise ValidationError("Additional costs must be a non-negative whole number of minor units",
                              {"additional_costs": additional_costs})
    photos = photos or []

    with unit_of_work(db):
        _claim_sheet(db, sheet)
        existing_photos = list(sheet.photos or [])
        if len(existing_photos) + len(photos) > settings.MAX_SHEET_PHOTOS:
            raise ValidationError(
                f"At most {settings.MAX_SHEET_PHOTOS} photos per job sheet",
                {"existing": len(existing_photos), "added": len(photos)},
            )
        if notes:
            sheet.contractor_notes = "\n".join(filter(None, [sheet.contractor_notes, notes.strip()]))
        if materials:
            sheet.materials_used = "\n".join(filter(None, [sheet.materials_used, materials.strip()]))
        if time_spent:
            sheet.time_spent = time_spent
        if additional_costs:
            sheet.additional_costs = (sheet.additional_costs or 0) + additional_costs
        if photos:
            sheet.photos = existing_photos + photos
        logger.info(f"Job sheet {sheet.id}: work recorded by {actor.id}")
    return sheet


def attach_signature(
    db: Session,
    sheet: JobSheet,
    actor: User,
    role: SignatureRole,
    capture: SignatureCapture,
) -> JobSheet:
    """Store one party's signature; the second one after check-out completes the job."""
    role = SignatureRole(role)
    job = sheet.job
    _require_editable(job, sheet)
    _require_signer(job, actor, role)

    blob = capture.capture()
    if not blob:
        raise ValidationError("Signature is empty", {"role": role.value})

    with unit_of_work(db):
        _claim_sheet(db, sheet)
        if role == SignatureRole.CONTRACTOR:
            sheet.contractor_signature = blob
        else:
            sheet.homeowner_signature = blob
        db.flush()
        logger.info(f"Job sheet {sheet.id}: {role.value} signature attached")
        _complete_if_ready(db, sheet, job, actor)
    return sheet
