"""Tests for the quote manager."""

import pytest

from errors import AuthorizationError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from lifecycle import orchestrator
from models.enums import JobStatus, QuoteStatus, UserRole
from models.models import Quote, Trade, User
from services import quotes

from conftest import make_job


class TestSubmitQuote:
    """Test quote submission."""

    def test_first_quote_matches_job(self, db_session, job, contractor):
        quote = quotes.submit_quote(db_session, job, contractor, 20000, 120, "Replace trap")
        assert quote.status == QuoteStatus.PENDING.value
        assert job.status == JobStatus.MATCHED.value
        assert job.contractor_id == contractor.id

    def test_second_quote_keeps_tentative_contractor(self, db_session, job, contractor, rival):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        quotes.submit_quote(db_session, job, rival, 18000, 90)
        assert job.status == JobStatus.MATCHED.value
        assert job.contractor_id == contractor.id
        assert len(job.quotes) == 2

    def test_one_quote_per_contractor(self, db_session, job, contractor):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        with pytest.raises(ConflictError):
            quotes.submit_quote(db_session, job, contractor, 19000, 120)
        assert db_session.query(Quote).count() == 1

    def test_homeowner_cannot_quote(self, db_session, job, homeowner):
        with pytest.raises(AuthorizationError):
            quotes.submit_quote(db_session, job, homeowner, 20000, 120)

    @pytest.mark.parametrize("amount,duration", [(0, 60), (-5, 60), (100, 0), (19.99, 60)])
    def test_amount_and_duration_positive_integers(self, db_session, job, contractor, amount, duration):
        with pytest.raises(ValidationError):
            quotes.submit_quote(db_session, job, contractor, amount, duration)
        assert job.status == JobStatus.PENDING.value

    def test_closed_job_takes_no_quotes(self, db_session, scheduled_job, rival):
        with pytest.raises(InvalidStateError):
            quotes.submit_quote(db_session, scheduled_job, rival, 10000, 60)

    def test_cancelled_job_takes_no_quotes(self, db_session, job, homeowner, contractor):
        orchestrator.change_status(db_session, job, JobStatus.CANCELLED, homeowner)
        with pytest.raises(InvalidStateError):
            quotes.submit_quote(db_session, job, contractor, 10000, 60)


class TestAcceptQuote:
    """Test quote acceptance."""

    def test_accept_binds_contractor_not_time(self, db_session, job, homeowner, contractor, rival):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        chosen = quotes.submit_quote(db_session, job, rival, 18000, 90)

        quotes.accept_quote(db_session, job, chosen, homeowner)

        assert job.status == JobStatus.MATCHED.value
        assert job.contractor_id == rival.id
        assert job.estimated_cost == 18000
        assert job.estimated_duration == 90
        assert job.scheduled_date is None

    def test_exactly_one_accepted_siblings_rejected(self, db_session, job, homeowner, contractor, rival):
        first = quotes.submit_quote(db_session, job, contractor, 20000, 120)
        second = quotes.submit_quote(db_session, job, rival, 18000, 90)
        quotes.accept_quote(db_session, job, first, homeowner)

        assert first.status == QuoteStatus.ACCEPTED.value
        assert second.status == QuoteStatus.REJECTED.value
        assert quotes.get_accepted_quote(db_session, job).id == first.id

    def test_pending_job_cannot_accept(self, db_session, job, homeowner, contractor, trade):
        other = make_job(db_session, homeowner, trade, title="Other")
        quote = quotes.submit_quote(db_session, other, contractor, 20000, 120)
        # Job is pending, quote is on another job
        with pytest.raises(InvalidStateError):
            quotes.accept_quote(db_session, job, quote, homeowner)

    def test_scheduled_job_cannot_accept(self, db_session, scheduled_job, homeowner, rival):
        stray = Quote(job_id=scheduled_job.id, contractor_id=rival.id, amount=100, estimated_duration=10)
        db_session.add(stray)
        db_session.commit()
        with pytest.raises(InvalidStateError):
            quotes.accept_quote(db_session, scheduled_job, stray, homeowner)

    def test_quote_from_other_job(self, db_session, job, homeowner, contractor, trade):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        other = make_job(db_session, homeowner, trade, title="Other")
        foreign = quotes.submit_quote(db_session, other, contractor, 5000, 30)
        with pytest.raises(InvalidStateError):
            quotes.accept_quote(db_session, job, foreign, homeowner)

    def test_only_homeowner_accepts(self, db_session, job, contractor):
        quote = quotes.submit_quote(db_session, job, contractor, 20000, 120)
        with pytest.raises(AuthorizationError):
            quotes.accept_quote(db_session, job, quote, contractor)

    def test_rejected_quote_cannot_be_accepted(self, db_session, job, homeowner, contractor, rival):
        first = quotes.submit_quote(db_session, job, contractor, 20000, 120)
        second = quotes.submit_quote(db_session, job, rival, 18000, 90)
        quotes.accept_quote(db_session, job, first, homeowner)
        with pytest.raises(InvalidStateError):
            quotes.accept_quote(db_session, job, second, homeowner)

    def test_stale_accept_loses(self, file_session_factory):
        db = file_session_factory()
        trade = Trade(name="Plumbing")
        homeowner = User(email="ana@example.com", role=UserRole.HOMEOWNER.value)
        cy = User(email="cy@example.com", role=UserRole.CONTRACTOR.value)
        dee = User(email="dee@example.com", role=UserRole.CONTRACTOR.value)
        db.add_all([trade, homeowner, cy, dee])
        db.commit()
        job = make_job(db, homeowner, trade)
        first = quotes.submit_quote(db, job, cy, 20000, 120)
        second = quotes.submit_quote(db, job, dee, 18000, 90)
        ids = (job.id, homeowner.id, first.id, second.id)
        db.close()

        db_a = file_session_factory()
        db_b = file_session_factory()
        job_b = orchestrator.get_job(db_b, ids[0])
        quote_b = quotes.get_quote(db_b, ids[3])
        homeowner_b = orchestrator.get_user(db_b, ids[1])
        assert quote_b.status == QuoteStatus.PENDING.value

        quotes.accept_quote(db_a, orchestrator.get_job(db_a, ids[0]), quotes.get_quote(db_a, ids[2]),
                            orchestrator.get_user(db_a, ids[1]))

        with pytest.raises(ConflictError):
            quotes.accept_quote(db_b, job_b, quote_b, homeowner_b)

        accepted = db_b.query(Quote).filter(Quote.status == QuoteStatus.ACCEPTED.value).all()
        assert [q.id for q in accepted] == [ids[2]]
        db_a.close()
        db_b.close()


class TestListQuotes:
    """Test quote visibility."""

    def test_homeowner_sees_all_cheapest_first(self, db_session, job, homeowner, contractor, rival):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        quotes.submit_quote(db_session, job, rival, 18000, 90)
        assert [q.amount for q in quotes.list_quotes(db_session, job, homeowner)] == [18000, 20000]

    def test_contractor_sees_own(self, db_session, job, contractor, rival):
        quotes.submit_quote(db_session, job, contractor, 20000, 120)
        quotes.submit_quote(db_session, job, rival, 18000, 90)
        assert [q.contractor_id for q in quotes.list_quotes(db_session, job, rival)] == [rival.id]

    def test_other_homeowner_forbidden(self, db_session, job, neighbour):
        with pytest.raises(AuthorizationError):
            quotes.list_quotes(db_session, job, neighbour)

    def test_missing_quote(self, db_session):
        with pytest.raises(NotFoundError):
            quotes.get_quote(db_session, 999)
