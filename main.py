"""HomeFix Core — FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import settings
from database import init_db
from errors import setup_error_handlers
from routes import (
    health_router, jobs_router, quotes_router, slots_router,
    proposals_router, job_sheets_router, reviews_router,
)
from services import notifications

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s | %(levelname)-7s | %(name)-25s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("=" * 60)
    logger.info("HomeFix Core — Starting up")
    logger.info("=" * 60)
    init_db()
    logger.info("Database initialized")
    notifications.register()
    logger.info("Event subscribers registered")
    yield
    logger.info("HomeFix Core — Shutting down")


app = FastAPI(
    title="HomeFix Core",
    description="Job lifecycle backend for a home-services marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS — allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app)

# Register routes
app.include_router(health_router)
app.include_router(jobs_router)
app.include_router(quotes_router)
app.include_router(slots_router)
app.include_router(proposals_router)
app.include_router(job_sheets_router)
app.include_router(reviews_router)

app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "service": "HomeFix Core",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
