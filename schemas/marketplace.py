"""Pydantic schemas for requests and responses of the job lifecycle API."""

from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.enums import JobStatus, ProposalStatus, SignatureRole


def _to_naive_utc(value: datetime | None) -> datetime | None:
    """Timestamps are stored as naive UTC; convert aware inputs."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_preferred_date(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    try:
        return date_parser.parse(value).date().isoformat()
    except (ValueError, OverflowError):
        raise ValueError(f"Unrecognized preferred date: '{value}'")


# --- Jobs ---

class JobCreate(BaseModel):
    """A homeowner's job request. Required fields are checked by the orchestrator."""
    title: str | None = Field(default=None, description="Short summary of the work")
    description: str | None = Field(default=None, description="What needs doing")
    trade_id: int | None = Field(default=None, description="Trade category of the work")
    location: str | None = None
    preferred_date: str | None = Field(default=None, description="ISO date or free text like 'June 1'")
    preferred_time: str | None = Field(default=None, description="e.g. 'morning' or '09:00'")
    photos: list[str] = Field(default_factory=list)

    @field_validator("preferred_date")
    @classmethod
    def normalize_preferred_date(cls, value: str | None) -> str | None:
        return _parse_preferred_date(value)


class JobUpdate(BaseModel):
    """Homeowner-editable fields while a job is still open."""
    title: str | None = None
    description: str | None = None
    location: str | None = None
    preferred_date: str | None = None
    preferred_time: str | None = None
    photos: list[str] | None = None

    @field_validator("preferred_date")
    @classmethod
    def normalize_preferred_date(cls, value: str | None) -> str | None:
        return _parse_preferred_date(value)


class JobStatusUpdate(BaseModel):
    status: JobStatus
    mutual_agreement: bool = False


class JobResponse(BaseModel):
    """Job data for API responses."""
    id: int
    status: JobStatus
    homeowner_id: int
    contractor_id: int | None
    trade_id: int
    title: str
    description: str
    location: str | None
    preferred_date: str | None
    preferred_time: str | None
    scheduled_date: datetime | None
    estimated_duration: int | None
    estimated_cost: int | None
    actual_cost: int | None
    paid: bool
    cancellation_requested_by: int | None
    photos: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContractorMatchResponse(BaseModel):
    contractor_id: int
    name: str
    city: str | None
    average_rating: float
    review_count: int
    score: float
    available_soon: bool


class PaymentRecord(BaseModel):
    reference: str = Field(min_length=1, description="Payment provider transaction id")


# --- Quotes ---

class QuoteCreate(BaseModel):
    job_id: int
    amount: int = Field(gt=0, description="Price in minor currency units")
    estimated_duration: int = Field(gt=0, description="Minutes")
    description: str = ""


class QuoteResponse(BaseModel):
    id: int
    job_id: int
    contractor_id: int
    amount: int
    estimated_duration: int
    description: str | None
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Scheduling ---

class SlotCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    title: str | None = None
    notes: str | None = None
    location: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        return _to_naive_utc(value)


class SlotUpdate(BaseModel):
    """Contractor edits to an open slot; only the fields sent are changed."""
    start_time: datetime | None = None
    end_time: datetime | None = None
    title: str | None = None
    notes: str | None = None
    location: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def to_naive_utc(cls, value: datetime | None) -> datetime | None:
        return _to_naive_utc(value)


class SlotBook(BaseModel):
    job_id: int


class SlotResponse(BaseModel):
    id: int
    contractor_id: int
    start_time: datetime
    end_time: datetime
    is_booked: bool
    job_id: int | None
    title: str | None
    notes: str | None
    location: str | None

    model_config = ConfigDict(from_attributes=True)


class ProposalCreate(BaseModel):
    job_id: int
    start_time: datetime
    end_time: datetime
    message: str | None = None
    slot_id: int | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        return _to_naive_utc(value)


class ProposalRespond(BaseModel):
    response: ProposalStatus
    message: str | None = None
    counter_start: datetime | None = None
    counter_end: datetime | None = None

    @field_validator("counter_start", "counter_end")
    @classmethod
    def to_naive_utc(cls, value: datetime | None) -> datetime | None:
        return _to_naive_utc(value)


class ProposalResponse(BaseModel):
    id: int
    job_id: int
    proposer_id: int
    responder_id: int | None
    slot_id: int | None
    previous_id: int | None
    start_time: datetime
    end_time: datetime
    status: ProposalStatus
    message: str | None
    response_message: str | None
    created_at: datetime
    responded_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


# --- Job sheets ---

class GeoPoint(BaseModel):
    """A device location fix."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0, description="Metres")


class LocationReport(BaseModel):
    """What the device reported: a fix, or the reason it could not get one."""
    location: GeoPoint | None = None
    error: str | None = Field(default=None, description="e.g. 'permission denied'")


class JobSheetResponse(BaseModel):
    id: int
    job_id: int
    contractor_id: int
    contractor_notes: str | None
    materials_used: str | None
    time_spent: str | None
    additional_costs: int
    photos: list[str] = Field(default_factory=list)
    check_in_time: datetime | None
    check_out_time: datetime | None
    check_in_location: dict | None
    check_out_location: dict | None
    contractor_signed: bool = False
    homeowner_signed: bool = False
    status: str
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_sheet(cls, sheet) -> "JobSheetResponse":
        response = cls.model_validate(sheet)
        response.contractor_signed = bool(sheet.contractor_signature)
        response.homeowner_signed = bool(sheet.homeowner_signature)
        return response


class SignatureIn(BaseModel):
    role: SignatureRole
    signature: str = Field(min_length=1, description="Opaque signature blob reference")


# --- Reviews ---

class ReviewCreate(BaseModel):
    job_id: int
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class ReviewResponse(BaseModel):
    id: int
    job_id: int
    homeowner_id: int
    contractor_id: int
    rating: int
    comment: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
