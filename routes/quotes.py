"""Quote routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from lifecycle.orchestrator import get_job
from models.models import User
from routes.deps import get_actor
from schemas.marketplace import QuoteCreate, QuoteResponse
from services import quotes

router = APIRouter(prefix="/api/quotes", tags=["quotes"])


@router.post("", response_model=QuoteResponse, status_code=201)
def submit_quote(body: QuoteCreate, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    job = get_job(db, body.job_id)
    return quotes.submit_quote(db, job, actor, body.amount, body.estimated_duration, body.description)


@router.get("/job/{job_id}", response_model=list[QuoteResponse])
def list_quotes(job_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    return quotes.list_quotes(db, get_job(db, job_id), actor)


@router.post("/{quote_id}/accept", response_model=QuoteResponse)
def accept_quote(quote_id: int, actor: User = Depends(get_actor), db: Session = Depends(get_db)):
    quote = quotes.get_quote(db, quote_id)
    job = get_job(db, quote.job_id)
    return quotes.accept_quote(db, job, quote, actor)
