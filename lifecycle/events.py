"""Domain events for external consumers (notifications, calendar sync, payments).

Events are queued on the session while a transaction is open and handed to
subscribers only after the transaction commits. A rollback discards them.
"""

import logging
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field
from sqlalchemy import event
from sqlalchemy.orm import Session

from models.enums import JobStatus
from models.models import JobEvent, utcnow

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_job_events"


class JobStatusChanged(BaseModel):
    job_id: int
    from_status: JobStatus
    to_status: JobStatus
    actor_id: int | None = None
    occurred_at: datetime = Field(default_factory=utcnow)


Handler = Callable[[JobStatusChanged], None]

_subscribers: list[Handler] = []


def subscribe(handler: Handler) -> Handler:
    """Register a consumer. Usable as a decorator."""
    if handler not in _subscribers:
        _subscribers.append(handler)
    return handler


def unsubscribe(handler: Handler) -> None:
    if handler in _subscribers:
        _subscribers.remove(handler)


def record(db: Session, change: JobStatusChanged) -> None:
    """Persist the change in the current transaction and queue it for dispatch."""
    db.add(JobEvent(
        job_id=change.job_id,
        from_status=change.from_status.value,
        to_status=change.to_status.value,
        actor_id=change.actor_id,
        created_at=change.occurred_at,
    ))
    db.info.setdefault(_PENDING_KEY, []).append(change)


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session: Session) -> None:
    changes = session.info.pop(_PENDING_KEY, [])
    for change in changes:
        for handler in list(_subscribers):
            try:
                handler(change)
            except Exception:
                # State is already committed; a consumer failure must not undo it
                logger.exception(
                    f"Event handler {getattr(handler, '__name__', handler)} failed for "
                    f"job {change.job_id} {change.from_status.value} -> {change.to_status.value}"
                )


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session: Session, previous_transaction) -> None:
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info(f"Discarded {len(dropped)} uncommitted job event(s)")
