from schemas.marketplace import (
    JobCreate, JobUpdate, JobStatusUpdate, JobResponse, ContractorMatchResponse, PaymentRecord,
    QuoteCreate, QuoteResponse, SlotCreate, SlotUpdate, SlotBook, SlotResponse,
    ProposalCreate, ProposalRespond, ProposalResponse,
    GeoPoint, LocationReport, JobSheetResponse, SignatureIn,
    ReviewCreate, ReviewResponse,
)
