"""Health check route."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from database import get_db

router = APIRouter(tags=["health"])


@router.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for deployment monitoring."""
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "service": "HomeFix Core", "database": "ok"}
