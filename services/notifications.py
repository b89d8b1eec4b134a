"""Built-in consumers of the job status event stream.

Delivery (push, email, calendar providers) is external; these consumers
decide what each change means for the parties and hand it on through the
log, which is what the delivery workers tail.
"""

import logging

from lifecycle import events
from models.enums import JobStatus

logger = logging.getLogger(__name__)

_NOTICES = {
    JobStatus.MATCHED: "A contractor has quoted on job {job_id}",
    JobStatus.SCHEDULED: "Job {job_id} has been scheduled",
    JobStatus.IN_PROGRESS: "The contractor has checked in for job {job_id}",
    JobStatus.COMPLETED: "Job {job_id} is complete and ready for payment",
    JobStatus.CANCELLED: "Job {job_id} has been cancelled",
}


def notify_parties(change: events.JobStatusChanged) -> None:
    template = _NOTICES.get(change.to_status)
    if template is None:
        return
    logger.info(f"[notify] {template.format(job_id=change.job_id)} (by user {change.actor_id})")


def sync_calendar(change: events.JobStatusChanged) -> None:
    """Calendar entries exist for scheduled jobs; they go when the job is cancelled."""
    if change.to_status == JobStatus.SCHEDULED:
        logger.info(f"[calendar] add appointment for job {change.job_id}")
    elif change.to_status == JobStatus.CANCELLED and change.from_status == JobStatus.SCHEDULED:
        logger.info(f"[calendar] remove appointment for job {change.job_id}")


def register() -> None:
    events.subscribe(notify_parties)
    events.subscribe(sync_calendar)
