"""Homeowner reviews of completed jobs, feeding contractor ratings."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import AuthorizationError, ConflictError, InvalidStateError, ValidationError
from models.enums import JobStatus
from models.models import Job, Review, User

logger = logging.getLogger(__name__)


def submit_review(db: Session, job: Job, homeowner: User, rating: int, comment: str = "") -> Review:
    """One review per completed job; updates the contractor's running average."""
    if homeowner.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner can review job {job.id}", {"job_id": job.id})
    if JobStatus(job.status) != JobStatus.COMPLETED:
        raise InvalidStateError(
            f"Job {job.id} is '{job.status}'; only completed jobs can be reviewed",
            {"job_id": job.id, "current_status": job.status},
        )
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be a whole number from 1 to 5", {"rating": rating})

    contractor = job.contractor
    with unit_of_work(db):
        review = Review(
            job_id=job.id,
            homeowner_id=homeowner.id,
            contractor_id=contractor.id,
            rating=rating,
            comment=comment or "",
        )
        db.add(review)
        try:
            db.flush()
        except IntegrityError:
            raise ConflictError(f"Job {job.id} has already been reviewed", {"job_id": job.id})

        count = contractor.review_count or 0
        total = (contractor.average_rating or 0.0) * count + rating
        contractor.review_count = count + 1
        contractor.average_rating = round(total / contractor.review_count, 2)
        logger.info(
            f"Review {review.id}: job {job.id} rated {rating}/5; contractor {contractor.id} "
            f"now {contractor.average_rating} over {contractor.review_count} review(s)"
        )
    return review


def list_reviews_for_contractor(db: Session, contractor_id: int) -> list[Review]:
    return db.query(Review).filter(
        Review.contractor_id == contractor_id
    ).order_by(Review.created_at.desc(), Review.id.desc()).all()
