from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from nphies_poll.core.config import get_settings
from nphies_poll.core.logging import configure_logging, request_id_middleware
from nphies_poll.db.base import get_database_url
from nphies_poll.db.init import sanitize_db_url
from nphies_poll.polling.orchestrator import get_orchestrator
from nphies_poll.polling.router import router as system_poll_router
from nphies_poll.polling.scheduler import get_scheduler

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.ENV)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup
    logger.info("Starting NPHIES system poll service...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Database: {sanitize_db_url(get_database_url())}")

    orchestrator = get_orchestrator()
    recovered = await orchestrator.recover_orphaned_runs()
    if recovered:
        logger.warning(f"Finalized {len(recovered)} interrupted poll run(s): {recovered}")

    scheduler = get_scheduler()
    if settings.ENABLE_SCHEDULED_POLLING:
        await scheduler.start()
        logger.info(f"Scheduled polling every {settings.POLL_INTERVAL_MINUTES} minutes")
    else:
        logger.info("Scheduled polling disabled, use POST /system-poll/trigger")

    yield

    # Shutdown
    logger.info("Shutting down NPHIES system poll service...")
    await scheduler.stop()
    await orchestrator.aclose()
    logger.info("Shutdown complete")


app = FastAPI(title="NPHIES System Poll", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(system_poll_router)


@app.get("/")
def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
    return {"status": "healthy", "env": settings.ENV}
