from routes.health import router as health_router
from routes.jobs import router as jobs_router
from routes.quotes import router as quotes_router
from routes.scheduling import slots_router, proposals_router
from routes.job_sheets import router as job_sheets_router
from routes.reviews import router as reviews_router

__all__ = [
    "health_router", "jobs_router", "quotes_router", "slots_router",
    "proposals_router", "job_sheets_router", "reviews_router",
]
