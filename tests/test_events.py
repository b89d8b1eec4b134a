"""Tests for job status events: delivered after commit, never before."""

import logging

import pytest

from database import unit_of_work
from errors import PreconditionError
from lifecycle import events, orchestrator
from models.enums import JobStatus
from models.models import JobEvent
from services import notifications, quotes


class TestDispatch:
    """Test when and what subscribers receive."""

    def test_event_after_commit(self, db_session, job, homeowner, published):
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        assert len(published) == 1
        change = published[0]
        assert change.job_id == job.id
        assert change.from_status == JobStatus.PENDING
        assert change.to_status == JobStatus.CANCELLED
        assert change.actor_id == homeowner.id

    def test_not_delivered_before_commit(self, db_session, job, contractor, published):
        seen_inside = []
        with unit_of_work(db_session):
            orchestrator.transition(db_session, job, JobStatus.MATCHED, contractor, {"contractor_id": contractor.id})
            seen_inside.extend(published)
        assert seen_inside == []
        assert [c.to_status for c in published] == [JobStatus.MATCHED]

    def test_rollback_discards_events(self, db_session, job, contractor, published):
        with pytest.raises(PreconditionError):
            with unit_of_work(db_session):
                orchestrator.transition(db_session, job, JobStatus.MATCHED, contractor, {"contractor_id": contractor.id})
                raise PreconditionError("later step failed")
        assert published == []
        assert db_session.query(JobEvent).count() == 0
        db_session.refresh(job)
        assert job.status == JobStatus.PENDING.value

    def test_full_lifecycle_sequence(self, db_session, scheduled_job, published):
        # scheduled_job fixture ran before the subscriber attached
        assert published == []
        rows = db_session.query(JobEvent).filter(JobEvent.job_id == scheduled_job.id).order_by(JobEvent.id).all()
        assert [(r.from_status, r.to_status) for r in rows] == [
            ("pending", "matched"),
            ("matched", "scheduled"),
        ]

    def test_quote_acceptance_emits_nothing(self, db_session, job, homeowner, contractor, published):
        quote = quotes.submit_quote(db_session, job, contractor, 20000, 120)
        quotes.accept_quote(db_session, job, quote, homeowner)
        assert [c.to_status for c in published] == [JobStatus.MATCHED]


class TestSubscribers:
    """Test subscriber failure handling and the built-in consumers."""

    def test_failing_subscriber_does_not_undo_commit(self, db_session, job, homeowner, published):
        def broken(change):
            raise RuntimeError("calendar provider down")

        events.subscribe(broken)
        try:
            orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        finally:
            events.unsubscribe(broken)

        assert job.status == JobStatus.CANCELLED.value
        assert len(published) == 1

    def test_subscribe_is_idempotent(self, db_session, job, homeowner):
        received = []
        events.subscribe(received.append)
        events.subscribe(received.append)
        try:
            orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        finally:
            events.unsubscribe(received.append)
        assert len(received) == 1

    def test_notifications_logged(self, db_session, scheduled_job, homeowner, contractor, caplog):
        notifications.register()
        try:
            with caplog.at_level(logging.INFO, logger="services.notifications"):
                orchestrator.request_cancellation(db_session, scheduled_job, homeowner)
                orchestrator.request_cancellation(db_session, scheduled_job, contractor)
        finally:
            events.unsubscribe(notifications.notify_parties)
            events.unsubscribe(notifications.sync_calendar)

        messages = [r.getMessage() for r in caplog.records if r.name == "services.notifications"]
        assert any(f"Job {scheduled_job.id} has been cancelled" in m for m in messages)
        assert any(f"remove appointment for job {scheduled_job.id}" in m for m in messages)
