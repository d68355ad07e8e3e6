"""
Marketplace - Backend API

Vendors, loyalty, reviews, A/B tests, pricing, analytics, exports and
background jobs.
"""
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables before settings are read
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace.api import (
    ab_tests, analytics, countries, currencies, emails, exports, loyalty, notifications, reviews, scheduler,
    search, tax, vendors,
)
from marketplace.api import settings as settings_api
from marketplace.core.config import settings
from marketplace.core.database import check_database
from marketplace.core.exceptions import register_exception_handlers
from marketplace.core.logging import setup_logging
from marketplace.services.scheduler_service import scheduler_service

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_ENABLED:
        scheduler_service.init_scheduler()
        scheduler_service.start_all_jobs()
        logger.info("Background scheduler started")
    yield
    if settings.SCHEDULER_ENABLED:
        scheduler_service.shutdown()
        logger.info("Background scheduler stopped")


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routers
app.include_router(vendors.router, prefix="/api/v1/vendors", tags=["Vendors"])
app.include_router(loyalty.router, prefix="/api/v1/loyalty", tags=["Loyalty"])
app.include_router(reviews.router, prefix="/api/v1/reviews", tags=["Reviews"])
app.include_router(ab_tests.router, prefix="/api/v1/ab-tests", tags=["A/B Tests"])
app.include_router(settings_api.router, prefix="/api/v1/settings", tags=["Settings"])
app.include_router(tax.router, prefix="/api/v1/tax", tags=["Tax"])
app.include_router(currencies.router, prefix="/api/v1/currencies", tags=["Currencies"])
app.include_router(countries.router, prefix="/api/v1/countries", tags=["Countries"])
app.include_router(analytics.router, prefix="/api/v1/analytics", tags=["Analytics"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(emails.router, prefix="/api/v1/email", tags=["Email"])
app.include_router(search.search_router, prefix="/api/v1/search", tags=["Search"])
app.include_router(search.recommendations_router, prefix="/api/v1/recommendations", tags=["Recommendations"])
app.include_router(scheduler.router, prefix="/api/v1/scheduler", tags=["Scheduler"])
app.include_router(exports.router, prefix="/api/v1/export", tags=["Export"])


@app.get("/")
async def root():
    return {
        "message": settings.API_TITLE,
        "status": "online",
        "version": settings.API_VERSION,
    }


@app.get("/health")
async def health():
    """Health check - tests database connectivity"""
    start_time = time.time()

    db_status = "unknown"
    db_error = None

    try:
        db_status = "connected" if check_database() else "disconnected"
    except Exception as e:
        db_status = "disconnected"
        db_error = str(e)

    latency_ms = round((time.time() - start_time) * 1000, 2)

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": settings.API_VERSION,
        "database": {
            "status": db_status,
            "latency_ms": latency_ms,
            "error": db_error,
        },
    }
