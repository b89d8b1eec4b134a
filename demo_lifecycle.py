"""HomeFix Core — Lifecycle Demo Script.

Walks the main job lifecycle scenarios against the service functions on a
throwaway in-memory database (no server needed).

Usage:
    source venv/bin/activate
    python demo_lifecycle.py
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models.models  # noqa: F401
from database import Base
from errors import ConflictError, DomainError
from lifecycle import orchestrator
from models.enums import ProposalStatus, SignatureRole, UserRole
from models.models import ContractorTrade, Trade, User
from schemas.marketplace import JobCreate
from services import completion, notifications, quotes, scheduling
from services.capabilities import FixedLocation, StaticSignature

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s | %(levelname)-7s | %(name)-25s | %(message)s",
    datefmt="%H:%M:%S",
)


def make_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


def seed(db):
    plumbing = Trade(name="Plumbing")
    homeowner = User(email="ana@example.com", first_name="Ana", role=UserRole.HOMEOWNER.value, city="Philadelphia")
    neighbour = User(email="ben@example.com", first_name="Ben", role=UserRole.HOMEOWNER.value, city="Philadelphia")
    contractor = User(email="cy@example.com", first_name="Cy", role=UserRole.CONTRACTOR.value, city="Philadelphia")
    db.add_all([plumbing, homeowner, neighbour, contractor])
    db.flush()
    db.add(ContractorTrade(contractor_id=contractor.id, trade_id=plumbing.id, years_of_experience=8, is_verified=True))
    db.commit()
    return plumbing, homeowner, neighbour, contractor


def new_job(db, homeowner, trade, title):
    return orchestrator.create_job(db, homeowner, JobCreate(
        title=title, description="Water under the sink", trade_id=trade.id, location="Philadelphia, PA",
    ))


def awarded_job(db, homeowner, contractor, trade, title):
    job = new_job(db, homeowner, trade, title)
    quote = quotes.submit_quote(db, job, contractor, 20000, 120, "Replace trap and seals")
    quotes.accept_quote(db, job, quote, homeowner)
    return job


def scenario_negotiated_schedule(db, trade, homeowner, neighbour, contractor):
    job = new_job(db, homeowner, trade, "Leaking sink")
    print(f"     created:        {job.status}")

    quote = quotes.submit_quote(db, job, contractor, 20000, 120, "Replace trap and seals")
    print(f"     quoted:         {job.status} (tentative contractor {job.contractor_id})")

    quotes.accept_quote(db, job, quote, homeowner)
    print(f"     quote accepted: {job.status}, scheduled_date={job.scheduled_date}")

    proposal = scheduling.propose(db, job, contractor, datetime(2024, 6, 1, 9), datetime(2024, 6, 1, 11))
    scheduling.respond(db, proposal, homeowner, ProposalStatus.ACCEPTED)
    print(f"     time accepted:  {job.status}, scheduled_date={job.scheduled_date}")
    return job.status == "scheduled" and job.scheduled_date == datetime(2024, 6, 1, 9)


def scenario_sign_off(db, trade, homeowner, neighbour, contractor):
    job = awarded_job(db, homeowner, contractor, trade, "Dripping tap")
    proposal = scheduling.propose(db, job, homeowner, datetime(2024, 6, 2, 9), datetime(2024, 6, 2, 10))
    scheduling.respond(db, proposal, contractor, ProposalStatus.ACCEPTED)

    start = datetime(2024, 6, 2, 9, 5)
    sheet = completion.check_in(db, job, contractor, FixedLocation(40.0, -75.0, 12.0), now=start)
    print(f"     checked in:     {job.status} at {sheet.check_in_location}")

    completion.check_out(db, job, contractor, FixedLocation(40.0, -75.0), now=start + timedelta(minutes=50))
    print(f"     checked out:    {job.status} (no signatures yet)")

    completion.attach_signature(db, sheet, contractor, SignatureRole.CONTRACTOR, StaticSignature("sig-contractor"))
    completion.attach_signature(db, sheet, homeowner, SignatureRole.HOMEOWNER, StaticSignature("sig-homeowner"))
    print(f"     both signed:    {job.status}, actual_cost={job.actual_cost}")
    return job.status == "completed"


def scenario_double_booking(db, trade, homeowner, neighbour, contractor):
    first = awarded_job(db, homeowner, contractor, trade, "Blocked drain")
    second = awarded_job(db, neighbour, contractor, trade, "Noisy pipes")
    slot = scheduling.create_slot(db, contractor, datetime(2024, 6, 3, 9), datetime(2024, 6, 3, 12))

    scheduling.book_slot(db, slot, first, homeowner)
    print(f"     first booking:  job {first.id} {first.status}")
    try:
        scheduling.book_slot(db, slot, second, neighbour)
    except ConflictError as e:
        print(f"     second booking: {e.code} — {e.message}")
    print(f"     slot bound to:  job {slot.job_id}; second job still {second.status}")
    return slot.job_id == first.id and second.status == "matched"


SCENARIOS = [
    ("🗓️  Quote, propose, accept", scenario_negotiated_schedule),
    ("✍️  Check-in, check-out, sign-off", scenario_sign_off),
    ("⚔️  Two homeowners, one slot", scenario_double_booking),
]


def run_demo():
    print("=" * 70)
    print("🚀 HOMEFIX CORE — LIFECYCLE DEMO")
    print("=" * 70)

    notifications.register()
    db = make_session()
    trade, homeowner, neighbour, contractor = seed(db)

    passed = 0
    for i, (name, scenario) in enumerate(SCENARIOS, 1):
        print("\n" + "=" * 70)
        print(f"  SCENARIO {i}/{len(SCENARIOS)}: {name}")
        try:
            ok = scenario(db, trade, homeowner, neighbour, contractor)
        except DomainError as e:
            ok = False
            print(f"\n  💥 {e.code}: {e.message} {e.details}")
        if ok:
            passed += 1
            print("\n  ✅ PASSED")
        else:
            print("\n  ❌ FAILED")

    db.close()
    print("\n" + "=" * 70)
    print(f"\n  📊 Results: {passed}/{len(SCENARIOS)} passed")
    print("=" * 70)


if __name__ == "__main__":
    run_demo()
