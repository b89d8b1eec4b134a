"""Tests for the job lifecycle orchestrator."""

from datetime import datetime, timedelta

import pytest

from errors import (
    AuthorizationError, InvalidStateError, InvalidTransitionError,
    NotFoundError, PreconditionError, ValidationError,
)
from lifecycle import orchestrator
from lifecycle.matching import find_matching_contractors
from models.enums import JobStatus, UserRole
from models.models import ContractorTrade, Job, JobEvent, ScheduleSlot, Trade, User
from schemas.marketplace import JobCreate
from services import quotes

from conftest import award, make_job, make_user


class TestCreateJob:
    """Test job creation."""

    def test_creates_pending_job(self, db_session, homeowner, trade):
        job = make_job(db_session, homeowner, trade, preferred_date="June 1 2024", preferred_time="morning")
        assert job.id is not None
        assert job.status == JobStatus.PENDING.value
        assert job.contractor_id is None
        assert job.scheduled_date is None
        assert job.paid is False
        assert job.preferred_date == "2024-06-01"

    def test_missing_required_fields(self, db_session, homeowner):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_job(db_session, homeowner, JobCreate(title="  "))
        assert exc_info.value.details["missing"] == ["title", "trade_id", "description"]
        assert db_session.query(Job).count() == 0

    def test_unknown_trade(self, db_session, homeowner):
        with pytest.raises(ValidationError):
            orchestrator.create_job(db_session, homeowner, JobCreate(title="Sink", description="Leak", trade_id=999))

    def test_contractor_cannot_create(self, db_session, contractor, trade):
        with pytest.raises(AuthorizationError):
            make_job(db_session, contractor, trade)

    def test_photo_cap(self, db_session, homeowner, trade):
        with pytest.raises(ValidationError):
            make_job(db_session, homeowner, trade, photos=[f"/uploads/p{i}.jpg" for i in range(6)])

    def test_get_missing_job(self, db_session):
        with pytest.raises(NotFoundError):
            orchestrator.get_job(db_session, 404)


class TestTransition:
    """Test edge, actor and invariant checks on status changes."""

    def test_edge_must_exist(self, db_session, job, homeowner):
        with pytest.raises(InvalidTransitionError) as exc_info:
            orchestrator.change_status(db_session, job, JobStatus.COMPLETED, homeowner)
        assert exc_info.value.details["attempted_transition"] == "pending->completed"
        assert exc_info.value.details["current_status"] == "pending"

    def test_invalid_transition_is_an_invalid_state(self, db_session, job, homeowner):
        with pytest.raises(InvalidStateError):
            orchestrator.change_status(db_session, job, JobStatus.IN_PROGRESS, homeowner)

    def test_scheduled_requires_a_date(self, db_session, matched_job, homeowner):
        with pytest.raises(PreconditionError) as exc_info:
            orchestrator.change_status(db_session, matched_job, JobStatus.SCHEDULED, homeowner)
        assert "scheduled date" in exc_info.value.message
        db_session.refresh(matched_job)
        assert matched_job.status == JobStatus.MATCHED.value

    def test_in_progress_requires_check_in(self, db_session, scheduled_job, contractor):
        with pytest.raises(PreconditionError) as exc_info:
            orchestrator.change_status(db_session, scheduled_job, JobStatus.IN_PROGRESS, contractor)
        assert exc_info.value.details["missing"] == "check_in_time"

    def test_homeowner_cannot_start_work(self, db_session, scheduled_job, homeowner):
        with pytest.raises(AuthorizationError):
            orchestrator.change_status(db_session, scheduled_job, JobStatus.IN_PROGRESS, homeowner)

    def test_outsider_is_rejected(self, db_session, matched_job, neighbour):
        with pytest.raises(AuthorizationError):
            orchestrator.change_status(db_session, matched_job, JobStatus.CANCELLED, neighbour)

    def test_updated_at_moves(self, db_session, job, homeowner):
        before = job.updated_at
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        assert job.updated_at >= before

    def test_transition_records_event_row(self, db_session, job, homeowner):
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        rows = db_session.query(JobEvent).filter(JobEvent.job_id == job.id).all()
        assert [(r.from_status, r.to_status, r.actor_id) for r in rows] == [("pending", "cancelled", homeowner.id)]


class TestCancellation:
    """Test who may cancel, and when."""

    def test_homeowner_cancels_pending(self, db_session, job, homeowner):
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        assert job.status == JobStatus.CANCELLED.value

    def test_homeowner_cancels_matched_and_contractor_is_cleared(self, db_session, matched_job, homeowner):
        orchestrator.change_status(db_session, matched_job, JobStatus.CANCELLED, homeowner)
        assert matched_job.status == JobStatus.CANCELLED.value
        assert matched_job.contractor_id is None

    def test_contractor_cannot_cancel_matched(self, db_session, matched_job, contractor):
        with pytest.raises(AuthorizationError):
            orchestrator.change_status(db_session, matched_job, JobStatus.CANCELLED, contractor)

    def test_scheduled_needs_mutual_agreement(self, db_session, scheduled_job, homeowner):
        with pytest.raises(InvalidTransitionError):
            orchestrator.change_status(db_session, scheduled_job, JobStatus.CANCELLED, homeowner)

    def test_mutual_flag_alone_is_not_enough(self, db_session, scheduled_job, homeowner):
        with pytest.raises(PreconditionError):
            orchestrator.change_status(db_session, scheduled_job, JobStatus.CANCELLED, homeowner, mutual_agreement=True)

    def test_two_party_cancellation(self, db_session, scheduled_job, homeowner, contractor):
        orchestrator.request_cancellation(db_session, scheduled_job, homeowner)
        assert scheduled_job.status == JobStatus.SCHEDULED.value
        assert scheduled_job.cancellation_requested_by == homeowner.id

        orchestrator.request_cancellation(db_session, scheduled_job, contractor)
        assert scheduled_job.status == JobStatus.CANCELLED.value
        assert scheduled_job.contractor_id is None
        assert scheduled_job.scheduled_date is None
        assert scheduled_job.cancellation_requested_by is None

    def test_repeat_request_by_same_party(self, db_session, scheduled_job, homeowner):
        orchestrator.request_cancellation(db_session, scheduled_job, homeowner)
        with pytest.raises(InvalidStateError):
            orchestrator.request_cancellation(db_session, scheduled_job, homeowner)

    def test_request_only_for_scheduled(self, db_session, matched_job, homeowner):
        with pytest.raises(InvalidStateError):
            orchestrator.request_cancellation(db_session, matched_job, homeowner)

    def test_terminal_jobs_stay_terminal(self, db_session, job, homeowner):
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        with pytest.raises(InvalidTransitionError):
            orchestrator.change_status(db_session, job, JobStatus.PENDING, homeowner)


class TestUpdateFields:
    """Test homeowner edits to open requests."""

    def test_edit_open_job(self, db_session, job, homeowner):
        orchestrator.update_fields(db_session, job, homeowner, {"title": "Leaking kitchen sink", "preferred_time": "afternoon"})
        assert job.title == "Leaking kitchen sink"
        assert job.preferred_time == "afternoon"

    def test_guarded_fields_not_editable(self, db_session, job, homeowner, contractor):
        with pytest.raises(ValidationError):
            orchestrator.update_fields(db_session, job, homeowner, {"contractor_id": contractor.id})

    def test_status_not_editable(self, db_session, job, homeowner):
        with pytest.raises(ValidationError):
            orchestrator.update_fields(db_session, job, homeowner, {"status": "completed"})

    def test_only_homeowner(self, db_session, job, contractor):
        with pytest.raises(AuthorizationError):
            orchestrator.update_fields(db_session, job, contractor, {"title": "Mine now"})

    def test_not_after_scheduling(self, db_session, scheduled_job, homeowner):
        with pytest.raises(InvalidStateError):
            orchestrator.update_fields(db_session, scheduled_job, homeowner, {"title": "Too late"})

    def test_empty_title_rejected(self, db_session, job, homeowner):
        with pytest.raises(ValidationError):
            orchestrator.update_fields(db_session, job, homeowner, {"title": "  "})


class TestListJobs:
    """Test which jobs each actor sees."""

    def test_homeowner_sees_own(self, db_session, job, homeowner, neighbour, trade):
        make_job(db_session, neighbour, trade, title="Not yours")
        assert [j.id for j in orchestrator.list_jobs_for_actor(db_session, homeowner)] == [job.id]

    def test_contractor_sees_bound_and_open(self, db_session, job, homeowner, contractor, trade):
        other = make_job(db_session, homeowner, trade, title="Second")
        award(db_session, other, homeowner, contractor)

        assert [j.id for j in orchestrator.list_jobs_for_actor(db_session, contractor)] == [other.id]
        visible = {j.id for j in orchestrator.list_jobs_for_actor(db_session, contractor, include_open=True)}
        assert visible == {job.id, other.id}

    def test_open_jobs_limited_to_trades(self, db_session, homeowner, contractor):
        roofing = Trade(name="Roofing")
        db_session.add(roofing)
        db_session.commit()
        make_job(db_session, homeowner, roofing, title="Loose tiles")
        assert orchestrator.list_jobs_for_actor(db_session, contractor, include_open=True) == []

    def test_status_filter(self, db_session, job, homeowner, trade):
        other = make_job(db_session, homeowner, trade, title="Cancelled one")
        orchestrator.change_status(db_session, other, JobStatus.CANCELLED, homeowner)
        pending = orchestrator.list_jobs_for_actor(db_session, homeowner, status=JobStatus.PENDING)
        assert [j.id for j in pending] == [job.id]


class TestPayment:
    """Test payment recording."""

    def test_only_completed_jobs(self, db_session, scheduled_job, homeowner):
        with pytest.raises(InvalidStateError):
            orchestrator.record_payment(db_session, scheduled_job, homeowner, "pi_123")
        db_session.refresh(scheduled_job)
        assert scheduled_job.paid is False

    def test_only_homeowner(self, db_session, scheduled_job, contractor):
        with pytest.raises(AuthorizationError):
            orchestrator.record_payment(db_session, scheduled_job, contractor, "pi_123")


class TestMatching:
    """Test contractor matching and ranking."""

    def test_ranks_by_score(self, db_session, job, contractor, rival):
        matches = orchestrator.match_contractors(db_session, job)
        assert [m.contractor.id for m in matches] == [contractor.id, rival.id]
        assert matches[0].score > matches[1].score

    def test_does_not_change_job(self, db_session, job, contractor):
        orchestrator.match_contractors(db_session, job)
        db_session.refresh(job)
        assert job.status == JobStatus.PENDING.value
        assert job.contractor_id is None

    def test_predicate_filters(self, db_session, job, contractor, rival):
        matches = orchestrator.match_contractors(db_session, job, predicate=lambda j, c: c.city == "Pittsburgh")
        assert [m.contractor.id for m in matches] == [rival.id]

    def test_other_trades_excluded(self, db_session, homeowner, contractor):
        roofing = Trade(name="Roofing")
        db_session.add(roofing)
        db_session.commit()
        roof_job = make_job(db_session, homeowner, roofing, title="Loose tiles")
        assert orchestrator.match_contractors(db_session, roof_job) == []

    def test_availability_bonus(self, db_session, job, rival):
        now = datetime(2024, 6, 1, 8)
        before = find_matching_contractors(db_session, job, now=now)[0]
        assert before.available_soon is False

        db_session.add(ScheduleSlot(
            contractor_id=rival.id,
            start_time=now + timedelta(days=1),
            end_time=now + timedelta(days=1, hours=2),
        ))
        db_session.commit()
        after = find_matching_contractors(db_session, job, now=now)[0]
        assert after.available_soon is True
        assert after.score == pytest.approx(before.score + 0.05)

    def test_homeowners_never_match(self, db_session, job, trade):
        odd = make_user(db_session, "odd@example.com", UserRole.HOMEOWNER)
        db_session.add(ContractorTrade(contractor_id=odd.id, trade_id=trade.id))
        db_session.commit()
        assert orchestrator.match_contractors(db_session, job) == []


class TestOptimisticConcurrency:
    """Test that a stale read fails instead of overwriting."""

    @pytest.fixture
    def seeded(self, file_session_factory):
        db = file_session_factory()
        trade = Trade(name="Plumbing")
        homeowner = User(email="ana@example.com", role=UserRole.HOMEOWNER.value)
        contractor = User(email="cy@example.com", role=UserRole.CONTRACTOR.value)
        db.add_all([trade, homeowner, contractor])
        db.commit()
        job = make_job(db, homeowner, trade)
        ids = {"job": job.id, "homeowner": homeowner.id, "contractor": contractor.id}
        db.close()
        return ids

    def test_quote_on_job_cancelled_meanwhile(self, file_session_factory, seeded):
        db_a = file_session_factory()
        db_b = file_session_factory()

        # B reads the job while it is still pending
        job_b = orchestrator.get_job(db_b, seeded["job"])
        contractor_b = orchestrator.get_user(db_b, seeded["contractor"])
        assert job_b.status == JobStatus.PENDING.value

        job_a = orchestrator.get_job(db_a, seeded["job"])
        orchestrator.change_status(db_a, job_a, JobStatus.CANCELLED, orchestrator.get_user(db_a, seeded["homeowner"]))

        with pytest.raises(InvalidStateError):
            quotes.submit_quote(db_b, job_b, contractor_b, 15000, 60)

        db_b.expire_all()
        job_b = orchestrator.get_job(db_b, seeded["job"])
        assert job_b.status == JobStatus.CANCELLED.value
        assert job_b.contractor_id is None
        assert job_b.quotes == []

        db_a.close()
        db_b.close()

    def test_concurrent_first_quotes_both_stand(self, file_session_factory, seeded):
        setup = file_session_factory()
        second = make_user(setup, "dee@example.com", UserRole.CONTRACTOR)
        second_id = second.id
        setup.close()

        db_a = file_session_factory()
        db_b = file_session_factory()

        # Both contractors read the job while it is pending
        job_a = orchestrator.get_job(db_a, seeded["job"])
        job_b = orchestrator.get_job(db_b, seeded["job"])
        assert job_b.status == JobStatus.PENDING.value

        quotes.submit_quote(db_a, job_a, orchestrator.get_user(db_a, seeded["contractor"]), 20000, 120)
        late = quotes.submit_quote(db_b, job_b, orchestrator.get_user(db_b, second_id), 15000, 90)

        assert late.id is not None
        assert job_b.status == JobStatus.MATCHED.value
        # The first quote's contractor stays the tentative contractor
        assert job_b.contractor_id == seeded["contractor"]

        db_b.expire_all()
        stored = orchestrator.get_job(db_b, seeded["job"])
        assert sorted(q.contractor_id for q in stored.quotes) == sorted([seeded["contractor"], second_id])
        rows = db_b.query(JobEvent).filter(JobEvent.job_id == seeded["job"]).all()
        assert [(e.from_status, e.to_status) for e in rows] == [("pending", "matched")]

        db_a.close()
        db_b.close()
