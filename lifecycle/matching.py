"""Contractor matching — find and rank contractors for a job's trade.

Ranking is a weighted score:
    rating 30%, review volume 15%, experience 20%, verification 10%,
    near-term availability 10%, proximity 15%
Callers may narrow the candidates with their own predicate (e.g. a real
distance check); matching never changes job state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from config import settings
from models.enums import UserRole
from models.models import ContractorTrade, Job, ScheduleSlot, User, utcnow

logger = logging.getLogger(__name__)

MatchPredicate = Callable[[Job, User], bool]


@dataclass
class ContractorMatch:
    contractor: User
    score: float
    available_soon: bool


def _proximity_score(job: Job, contractor: User) -> float:
    """City match beats state match; unknown location scores in the middle."""
    location = (job.location or "").lower()
    if location and contractor.city and contractor.city.lower() in location:
        return 1.0
    if location and contractor.state and contractor.state.lower() in location:
        return 0.7
    return 0.5


def _score(job: Job, contractor: User, specialization: ContractorTrade, available_soon: bool) -> float:
    rating_score = contractor.average_rating or 0.0
    review_count_score = min((contractor.review_count or 0) / 10, 1.0)
    experience_score = min((specialization.years_of_experience or 0) / 10, 1.0)
    verification_bonus = 0.5 if specialization.is_verified else 0.0
    availability_bonus = 0.5 if available_soon else 0.0

    return (
        rating_score * 0.30
        + review_count_score * 0.15
        + experience_score * 0.20
        + verification_bonus * 0.10
        + availability_bonus * 0.10
        + _proximity_score(job, contractor) * 0.15
    )


def find_matching_contractors(
    db: Session,
    job: Job,
    predicate: MatchPredicate | None = None,
    now: datetime | None = None,
) -> list[ContractorMatch]:
    """Contractors in the job's trade, best match first."""
    now = now or utcnow()
    horizon = now + timedelta(days=settings.MATCH_AVAILABILITY_DAYS)

    rows = (
        db.query(User, ContractorTrade)
        .join(ContractorTrade, ContractorTrade.contractor_id == User.id)
        .filter(
            ContractorTrade.trade_id == job.trade_id,
            User.role == UserRole.CONTRACTOR.value,
        )
        .all()
    )
    if not rows:
        logger.info(f"No contractors registered for trade {job.trade_id} (job {job.id})")
        return []

    contractor_ids = [user.id for user, _ in rows]
    available_ids = {
        contractor_id for (contractor_id,) in db.query(ScheduleSlot.contractor_id)
        .filter(
            ScheduleSlot.contractor_id.in_(contractor_ids),
            ScheduleSlot.is_booked.is_(False),
            ScheduleSlot.start_time > now,
            ScheduleSlot.start_time < horizon,
        )
        .distinct()
    }

    matches = []
    for contractor, specialization in rows:
        if predicate is not None and not predicate(job, contractor):
            continue
        available_soon = contractor.id in available_ids
        matches.append(ContractorMatch(
            contractor=contractor,
            score=round(_score(job, contractor, specialization, available_soon), 4),
            available_soon=available_soon,
        ))

    matches.sort(key=lambda m: (-m.score, m.contractor.id))
    logger.info(f"Matched {len(matches)} contractor(s) for job {job.id}")
    return matches
