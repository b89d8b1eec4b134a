"""Database engine, session management and the unit-of-work helper."""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)


# SQLAlchemy requires postgresql:// instead of postgres://
db_url = settings.DATABASE_URL
if db_url.startswith("postgres://"):
    db_url = db_url.replace("postgres://", "postgresql://", 1)

engine = create_engine(
    db_url,
    # Only use check_same_thread for SQLite
    **({"connect_args": {"check_same_thread": False}} if db_url.startswith("sqlite") else {}),
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def get_db():
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables."""
    # Register models on the metadata before creating tables
    import models.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def unit_of_work(db: Session):
    """
    Run one operation as a single transaction.

    Commits when the block finishes, rolls back and re-raises on any error,
    so no operation ever leaves a partial mutation behind.
    """
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Rolled back transaction: {type(e).__name__}: {e}")
        raise
