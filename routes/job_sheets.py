"""Job sheet routes — on-site check-in/out, work record and signatures."""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from database import get_db
from errors import DomainError, ValidationError
from lifecycle.orchestrator import get_job
from models.enums import SignatureRole
from models.models import User
from routes.deps import get_actor
from schemas.marketplace import JobSheetResponse, LocationReport, SignatureIn
from services import completion
from services.capabilities import StaticSignature, location_from_report
from services.uploads import discard, save_image

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/job-sheets", tags=["job-sheets"])


@router.get("/job/{job_id}", response_model=JobSheetResponse)
def get_job_sheet(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, job_id)
    return JobSheetResponse.from_sheet(completion.get_sheet_for_job(db, job, actor))


@router.post("/job/{job_id}", response_model=JobSheetResponse, status_code=201)
def open_job_sheet(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, job_id)
    return JobSheetResponse.from_sheet(completion.open_sheet(db, job, actor))


@router.post("/job/{job_id}/check-in", response_model=JobSheetResponse)
def check_in(job_id: int, report: LocationReport, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, job_id)
    sheet = completion.check_in(db, job, actor, location_from_report(report))
    return JobSheetResponse.from_sheet(sheet)


@router.post("/job/{job_id}/check-out", response_model=JobSheetResponse)
def check_out(job_id: int, report: LocationReport, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, job_id)
    sheet = completion.check_out(db, job, actor, location_from_report(report))
    return JobSheetResponse.from_sheet(sheet)


@router.post("/{sheet_id}/signature", response_model=JobSheetResponse)
def sign(sheet_id: int, body: SignatureIn, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    sheet = completion.get_sheet(db, sheet_id)
    sheet = completion.attach_signature(db, sheet, actor, body.role, StaticSignature(body.signature))
    return JobSheetResponse.from_sheet(sheet)


@router.patch("/{sheet_id}", response_model=JobSheetResponse)
async def update_job_sheet(
    sheet_id: int,
    contractor_notes: str | None = Form(default=None),
    materials_used: str | None = Form(default=None),
    time_spent: str | None = Form(default=None),
    additional_costs: int | None = Form(default=None),
    photos: list[UploadFile] = File(default=[]),
    signature_role: SignatureRole | None = Form(default=None),
    signature: UploadFile | None = File(default=None),
    actor: User = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Multipart update: text fields and photos are added to the work record,
    an optional signature image is attached for the given role.
    """
    sheet = completion.get_sheet(db, sheet_id)
    if signature is not None and signature_role is None:
        raise ValidationError("signature_role is required with a signature", {"job_sheet_id": sheet_id})

    has_work = any(v is not None for v in (contractor_notes, materials_used, time_spent, additional_costs))
    completion.authorize_update(
        sheet, actor,
        records_work=has_work or bool(photos),
        signature_role=signature_role if signature is not None else None,
    )

    # Files written but not yet referenced by a committed sheet
    pending = []
    try:
        for photo in photos:
            pending.append(await save_image(photo))
        if has_work or photos:
            sheet = completion.record_work(
                db, sheet, actor,
                notes=contractor_notes,
                materials=materials_used,
                time_spent=time_spent,
                additional_costs=additional_costs,
                photos=list(pending),
            )
            pending.clear()

        if signature is not None:
            reference = await save_image(signature, kind="signature")
            pending.append(reference)
            sheet = completion.attach_signature(db, sheet, actor, signature_role, StaticSignature(reference))
            pending.clear()
    except DomainError:
        discard(pending)
        logger.warning(f"Job sheet {sheet_id}: update by user {actor.id} rejected")
        raise

    logger.info(f"Job sheet {sheet_id} updated by user {actor.id}")
    return JobSheetResponse.from_sheet(sheet)
