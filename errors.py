"""Domain error taxonomy and the FastAPI handlers that render it.

Every error carries:
- code: machine-readable error code
- message: human-readable description
- details: entity id, current state and attempted transition where relevant
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for every failure the core reports to its caller."""

    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DomainError):
    """Malformed input, e.g. an end time that is not after the start time."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} not found: {identifier}"
        super().__init__(message, {"resource": resource, "identifier": identifier})


class AuthorizationError(DomainError):
    """Actor is not the homeowner/contractor the operation is restricted to."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidStateError(DomainError):
    """Operation attempted against an entity in the wrong state."""

    code = "INVALID_STATE"
    status_code = 409


class InvalidTransitionError(InvalidStateError):
    """The requested edge does not exist in the job status graph."""

    code = "INVALID_TRANSITION"

    def __init__(self, job_id: Any, from_status: str, to_status: str, reason: str = ""):
        message = f"Job {job_id} cannot move from '{from_status}' to '{to_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {
            "job_id": job_id,
            "current_status": from_status,
            "attempted_transition": f"{from_status}->{to_status}",
        })


class PreconditionError(DomainError):
    """An aggregate invariant would be violated by the requested effect."""

    code = "PRECONDITION_FAILED"
    status_code = 422


class ConflictError(DomainError):
    """A race was detected; the resource is no longer available."""

    code = "CONFLICT"
    status_code = 409


class LocationUnavailableError(DomainError):
    """Geolocation was denied or failed during check-in/out."""

    code = "LOCATION_UNAVAILABLE"
    status_code = 422


def _build_error_response(exc: DomainError, correlation_id: str) -> dict:
    return {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "details": exc.details,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }


def setup_error_handlers(app: FastAPI) -> None:
    """Register the domain error handler with the FastAPI app."""

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        correlation_id = str(uuid.uuid4())
        logger.warning(
            f"{request.method} {request.url.path} -> {exc.code}: {exc.message} "
            f"[{correlation_id}]"
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_build_error_response(exc, correlation_id),
        )
