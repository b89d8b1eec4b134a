"""Review routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from lifecycle.orchestrator import get_job
from models.models import User
from routes.deps import get_actor
from schemas.marketplace import ReviewCreate, ReviewResponse
from services import reviews

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.post("", response_model=ReviewResponse, status_code=201)
def submit_review(body: ReviewCreate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, body.job_id)
    return reviews.submit_review(db, job, actor, body.rating, body.comment)


@router.get("/contractor/{contractor_id}", response_model=list[ReviewResponse])
def list_reviews(contractor_id: int, db: Session = Depends(get_db)):
    return reviews.list_reviews_for_contractor(db, contractor_id)
