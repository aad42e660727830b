# app/main.py

from contextlib import asynccontextmanager
from fastapi import FastAPI
from apscheduler.schedulers.background import BackgroundScheduler
from app.config import settings
from app.database import init_db
from app.errors import register_exception_handlers
from app.webhook import router as webhook_router
from app.routes import router as monitor_router
from app.aggregator import run_scheduled_aggregation, run_scheduled_cleanup
from app.counters import counter_cache
from app.ingestion import ingestion_gateway
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""

    # Startup
    logger.info("Starting Posture Stats API...")

    # Initialize database tables
    init_db()
    logger.info("Database initialized")

    # Ingestion workers
    ingestion_gateway.pool.start()

    # Previous day's stats for every user
    scheduler.add_job(
        run_scheduled_aggregation,
        trigger="cron",
        hour=settings.aggregation_hour,
        minute=0,
        id="daily_aggregation",
        replace_existing=True,
    )

    # Posture log retention
    scheduler.add_job(
        run_scheduled_cleanup,
        trigger="cron",
        hour=settings.cleanup_hour,
        minute=0,
        id="log_cleanup",
        replace_existing=True,
    )

    # Drop live counters of abandoned sessions
    scheduler.add_job(
        counter_cache.purge_expired,
        trigger="interval",
        seconds=60,
        id="cache_purge",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")

    logger.info("Posture Stats API ready - listening for posture logs")

    yield

    # Shutdown
    logger.info("Shutting down...")

    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")

    # Let queued events finish before exit
    ingestion_gateway.pool.shutdown(wait=True)
    logger.info("Ingestion pool drained")


app = FastAPI(
    title="Posture Stats API",
    description="Tracks posture monitoring sessions and aggregates daily statistics",
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Register routes
app.include_router(webhook_router)
app.include_router(monitor_router)
