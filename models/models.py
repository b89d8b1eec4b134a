"""ORM models for the HomeFix job lifecycle core."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, ForeignKey, JSON,
    CheckConstraint, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship

from database import Base
from models.enums import JobStatus, QuoteStatus, ProposalStatus, SheetStatus, UserRole


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """A homeowner or a contractor."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    first_name = Column(String, default="")
    last_name = Column(String, default="")
    role = Column(String, nullable=False, default=UserRole.HOMEOWNER.value)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    average_rating = Column(Float, default=0.0)
    review_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)

    trades = relationship("ContractorTrade", back_populates="contractor")

    @property
    def is_contractor(self) -> bool:
        return self.role == UserRole.CONTRACTOR.value

    @property
    def is_homeowner(self) -> bool:
        return self.role == UserRole.HOMEOWNER.value

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


class Trade(Base):
    """A service category, e.g. plumbing or electrical."""

    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, default="")

    def __repr__(self):
        return f"<Trade {self.id}: {self.name}>"


class ContractorTrade(Base):
    """A contractor's specialization in a trade."""

    __tablename__ = "contractor_trades"
    __table_args__ = (UniqueConstraint("contractor_id", "trade_id"),)

    id = Column(Integer, primary_key=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trade_id = Column(Integer, ForeignKey("trades.id"), nullable=False, index=True)
    years_of_experience = Column(Integer, default=0)
    is_verified = Column(Boolean, default=False)

    contractor = relationship("User", back_populates="trades")
    trade = relationship("Trade")


class Job(Base):
    """A homeowner's service request and its full lifecycle record.

    Status and the fields guarded by the lifecycle invariants are only ever
    written through ``lifecycle.orchestrator``.
    """

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value, index=True)
    homeowner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    trade_id = Column(Integer, ForeignKey("trades.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String, nullable=True)
    preferred_date = Column(String, nullable=True)
    preferred_time = Column(String, nullable=True)
    scheduled_date = Column(DateTime, nullable=True)
    estimated_duration = Column(Integer, nullable=True)  # minutes
    estimated_cost = Column(Integer, nullable=True)  # minor currency units
    actual_cost = Column(Integer, nullable=True)  # minor currency units
    paid = Column(Boolean, nullable=False, default=False)
    payment_reference = Column(String, nullable=True)
    cancellation_requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    photos = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    homeowner = relationship("User", foreign_keys=[homeowner_id])
    contractor = relationship("User", foreign_keys=[contractor_id])
    trade = relationship("Trade")
    quotes = relationship("Quote", back_populates="job", order_by="Quote.id")
    proposals = relationship("AppointmentProposal", back_populates="job", order_by="AppointmentProposal.id")
    job_sheet = relationship("JobSheet", back_populates="job", uselist=False)

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.homeowner_id, self.contractor_id)

    def __repr__(self):
        return f"<Job {self.id}: {self.title} [{self.status}]>"


class Quote(Base):
    """A contractor's priced, timed offer against a job."""

    __tablename__ = "quotes"
    __table_args__ = (
        UniqueConstraint("job_id", "contractor_id", name="uq_quotes_job_contractor"),
        Index(
            "uq_quotes_one_accepted_per_job", "job_id", unique=True,
            sqlite_where=text("status = 'accepted'"),
            postgresql_where=text("status = 'accepted'"),
        ),
        CheckConstraint("amount > 0", name="ck_quotes_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Integer, nullable=False)  # minor currency units
    estimated_duration = Column(Integer, nullable=False)  # minutes
    description = Column(Text, default="")
    status = Column(String, nullable=False, default=QuoteStatus.PENDING.value)
    created_at = Column(DateTime, default=utcnow)

    job = relationship("Job", back_populates="quotes")

    def __repr__(self):
        return f"<Quote {self.id}: job {self.job_id} {self.amount} [{self.status}]>"


class ScheduleSlot(Base):
    """A contractor-declared window of availability, bookable at most once."""

    __tablename__ = "schedule_slots"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_slots_end_after_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True)
    title = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        state = f"booked by job {self.job_id}" if self.is_booked else "open"
        return f"<ScheduleSlot {self.id}: {self.start_time} - {self.end_time} ({state})>"


class AppointmentProposal(Base):
    """A proposed specific time for a job, subject to accept/reject/counter."""

    __tablename__ = "appointment_proposals"
    __table_args__ = (
        Index(
            "uq_proposals_one_pending_per_job", "job_id", unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        CheckConstraint("end_time > start_time", name="ck_proposals_end_after_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    proposer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    responder_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    slot_id = Column(Integer, ForeignKey("schedule_slots.id"), nullable=True)
    previous_id = Column(Integer, ForeignKey("appointment_proposals.id"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=ProposalStatus.PENDING.value)
    message = Column(Text, nullable=True)
    response_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    responded_at = Column(DateTime, nullable=True)

    job = relationship("Job", back_populates="proposals")

    def __repr__(self):
        return f"<AppointmentProposal {self.id}: job {self.job_id} {self.start_time} [{self.status}]>"


class JobSheet(Base):
    """The on-site record of check-in/out, work notes, photos and signatures."""

    __tablename__ = "job_sheets"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, unique=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    contractor_notes = Column(Text, default="")
    materials_used = Column(Text, default="")
    time_spent = Column(String(50), nullable=True)
    additional_costs = Column(Integer, nullable=False, default=0)  # minor currency units
    photos = Column(JSON, default=list)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)
    check_in_location = Column(JSON, nullable=True)  # {latitude, longitude, accuracy}
    check_out_location = Column(JSON, nullable=True)
    contractor_signature = Column(Text, nullable=True)
    homeowner_signature = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=SheetStatus.NOT_STARTED.value)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    job = relationship("Job", back_populates="job_sheet")

    def __repr__(self):
        return f"<JobSheet {self.id}: job {self.job_id} [{self.status}]>"


class JobEvent(Base):
    """Durable record of every committed job status change."""

    __tablename__ = "job_events"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<JobEvent job {self.job_id}: {self.from_status} -> {self.to_status}>"


class Review(Base):
    """A homeowner's rating of the contractor on a completed job."""

    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, unique=True)
    homeowner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, default="")
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Review {self.id}: job {self.job_id} {self.rating}/5>"
