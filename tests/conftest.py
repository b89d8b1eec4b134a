"""Shared fixtures: fresh databases, users, trades and jobs at each lifecycle stage."""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models.models  # noqa: F401
from database import Base
from lifecycle import events, orchestrator
from models.enums import ProposalStatus, UserRole
from models.models import ContractorTrade, Trade, User
from schemas.marketplace import JobCreate
from services import quotes, scheduling

APPOINTMENT_START = datetime(2024, 6, 1, 9, 0)
APPOINTMENT_END = datetime(2024, 6, 1, 11, 0)


@pytest.fixture
def engine():
    """In-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed database, for two sessions acting as concurrent users."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def published():
    """Job status events delivered to subscribers during the test."""
    received = []
    events.subscribe(received.append)
    yield received
    events.unsubscribe(received.append)


def make_user(db, email, role, **fields):
    user = User(email=email, role=role.value, **fields)
    db.add(user)
    db.commit()
    return user


def make_job(db, homeowner, trade, title="Leaking sink", **fields):
    details = JobCreate(title=title, description="Water under the sink", trade_id=trade.id, **fields)
    return orchestrator.create_job(db, homeowner, details)


def award(db, job, homeowner, contractor, amount=20000, duration=120):
    """Quote and accept, leaving the job matched with the contractor bound."""
    quote = quotes.submit_quote(db, job, contractor, amount, duration, "Replace trap and seals")
    quotes.accept_quote(db, job, quote, homeowner)
    return quote


def schedule(db, job, homeowner, contractor, start=APPOINTMENT_START, end=APPOINTMENT_END):
    proposal = scheduling.propose(db, job, contractor, start, end)
    scheduling.respond(db, proposal, homeowner, ProposalStatus.ACCEPTED)
    return job


@pytest.fixture
def trade(db_session):
    trade = Trade(name="Plumbing", description="Pipes and fixtures")
    db_session.add(trade)
    db_session.commit()
    return trade


@pytest.fixture
def homeowner(db_session):
    return make_user(db_session, "ana@example.com", UserRole.HOMEOWNER, first_name="Ana", city="Philadelphia")


@pytest.fixture
def neighbour(db_session):
    return make_user(db_session, "ben@example.com", UserRole.HOMEOWNER, first_name="Ben", city="Philadelphia")


@pytest.fixture
def contractor(db_session, trade):
    user = make_user(db_session, "cy@example.com", UserRole.CONTRACTOR, first_name="Cy", city="Philadelphia", state="PA")
    db_session.add(ContractorTrade(contractor_id=user.id, trade_id=trade.id, years_of_experience=8, is_verified=True))
    db_session.commit()
    return user


@pytest.fixture
def rival(db_session, trade):
    user = make_user(db_session, "dee@example.com", UserRole.CONTRACTOR, first_name="Dee", city="Pittsburgh", state="PA")
    db_session.add(ContractorTrade(contractor_id=user.id, trade_id=trade.id, years_of_experience=2))
    db_session.commit()
    return user


@pytest.fixture
def job(db_session, homeowner, trade):
    return make_job(db_session, homeowner, trade, location="12 Elm St, Philadelphia, PA")


@pytest.fixture
def matched_job(db_session, job, homeowner, contractor):
    award(db_session, job, homeowner, contractor)
    return job


@pytest.fixture
def scheduled_job(db_session, matched_job, homeowner, contractor):
    return schedule(db_session, matched_job, homeowner, contractor)
