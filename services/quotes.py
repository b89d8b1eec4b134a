"""Quote manager — contractor bids against a job.

Accepting a quote binds the contractor and the price. It does not schedule
the job: the time is agreed separately through the scheduling negotiator.
"""

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import AuthorizationError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from lifecycle import orchestrator
from models.enums import JobStatus, QuoteStatus
from models.models import Job, Quote, User

logger = logging.getLogger(__name__)

_QUOTABLE = {JobStatus.PENDING, JobStatus.MATCHED}


def get_quote(db: Session, quote_id: int) -> Quote:
    quote = db.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError("Quote", quote_id)
    return quote


def get_accepted_quote(db: Session, job: Job) -> Quote | None:
    return db.query(Quote).filter(
        Quote.job_id == job.id,
        Quote.status == QuoteStatus.ACCEPTED.value,
    ).first()


def _engage(db: Session, job: Job, contractor: User) -> None:
    """
    Move a pending job to matched for its first quote.

    Losing the status race to another quote is fine: the job is matched
    either way and this quote stands. Any other concurrent change means
    the job stopped taking quotes.
    """
    try:
        orchestrator.transition(db, job, JobStatus.MATCHED, contractor, {"contractor_id": contractor.id})
    except ConflictError:
        db.refresh(job)
        if JobStatus(job.status) != JobStatus.MATCHED:
            raise InvalidStateError(
                f"Job {job.id} is '{job.status}' and no longer takes quotes",
                {"job_id": job.id, "current_status": job.status},
            )
        logger.info(f"Job {job.id} was matched concurrently; quote from contractor {contractor.id} kept")


def submit_quote(
    db: Session,
    job: Job,
    contractor: User,
    amount: int,
    duration_minutes: int,
    description: str = "",
) -> Quote:
    """
    Record a contractor's quote.

    The first quote on a pending job moves it to matched, with the quoting
    contractor shown as a tentative contractor until a quote is accepted.
    """
    if not contractor.is_contractor:
        raise AuthorizationError("Only contractors can submit quotes", {"actor_id": contractor.id})
    if JobStatus(job.status) not in _QUOTABLE:
        raise InvalidStateError(
            f"Job {job.id} is '{job.status}' and no longer takes quotes",
            {"job_id": job.id, "current_status": job.status},
        )
    if not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Quote amount must be a positive whole number of minor units", {"amount": amount})
    if not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise ValidationError("Estimated duration must be a positive number of minutes", {"duration": duration_minutes})

    existing = db.query(Quote).filter(Quote.job_id == job.id, Quote.contractor_id == contractor.id).first()
    if existing is not None:
        raise ConflictError(
            f"Contractor {contractor.id} already quoted on job {job.id}",
            {"job_id": job.id, "quote_id": existing.id},
        )

    with unit_of_work(db):
        quote = Quote(
            job_id=job.id,
            contractor_id=contractor.id,
            amount=amount,
            estimated_duration=duration_minutes,
            description=description or "",
            status=QuoteStatus.PENDING.value,
        )
        db.add(quote)
        try:
            db.flush()
        except IntegrityError:
            raise ConflictError(
                f"Contractor {contractor.id} already quoted on job {job.id}",
                {"job_id": job.id},
            )

        if JobStatus(job.status) == JobStatus.PENDING:
            _engage(db, job, contractor)

        logger.info(f"Quote {quote.id}: contractor {contractor.id} bid {amount} on job {job.id} ({duration_minutes} min)")

    return quote


def accept_quote(db: Session, job: Job, quote: Quote, actor: User) -> Quote:
    """
    Accept one quote: it becomes accepted, every sibling is rejected, and
    the job is bound to the quoting contractor at the quoted price.
    """
    if actor.id != job.homeowner_id:
        raise AuthorizationError(f"Only the homeowner may accept quotes on job {job.id}", {"job_id": job.id})
    if JobStatus(job.status) != JobStatus.MATCHED:
        raise InvalidStateError(
            f"Quotes can be accepted only on matched jobs; job {job.id} is '{job.status}'",
            {"job_id": job.id, "current_status": job.status},
        )
    if quote.job_id != job.id:
        raise InvalidStateError(f"Quote {quote.id} does not belong to job {job.id}", {"quote_id": quote.id, "job_id": job.id})
    if quote.status != QuoteStatus.PENDING.value:
        raise InvalidStateError(
            f"Quote {quote.id} is '{quote.status}'",
            {"quote_id": quote.id, "current_status": quote.status},
        )

    with unit_of_work(db):
        try:
            result = db.execute(
                update(Quote)
                .where(Quote.id == quote.id, Quote.status == QuoteStatus.PENDING.value)
                .values(status=QuoteStatus.ACCEPTED.value)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            raise ConflictError(f"Another quote on job {job.id} was accepted first", {"job_id": job.id})
        if result.rowcount != 1:
            raise ConflictError(f"Quote {quote.id} was answered concurrently", {"quote_id": quote.id})

        rejected = db.execute(
            update(Quote)
            .where(Quote.job_id == job.id, Quote.id != quote.id)
            .values(status=QuoteStatus.REJECTED.value)
            .execution_options(synchronize_session=False)
        ).rowcount

        orchestrator.apply_changes(db, job, {
            "contractor_id": quote.contractor_id,
            "estimated_cost": quote.amount,
            "estimated_duration": quote.estimated_duration,
        })
        logger.info(
            f"Job {job.id}: accepted quote {quote.id} from contractor {quote.contractor_id} "
            f"({rejected} sibling(s) rejected)"
        )

    return quote


def list_quotes(db: Session, job: Job, actor: User) -> list[Quote]:
    """Homeowners see every quote on their job; contractors see their own."""
    query = db.query(Quote).filter(Quote.job_id == job.id)
    if actor.id == job.homeowner_id:
        return query.order_by(Quote.amount, Quote.id).all()
    if actor.is_contractor:
        return query.filter(Quote.contractor_id == actor.id).all()
    raise AuthorizationError(f"Not authorized to view quotes for job {job.id}", {"job_id": job.id})
