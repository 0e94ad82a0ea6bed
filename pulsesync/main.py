"""PulseSync — FastAPI Application Entry Point.

Operator surface for the day-partitioned record reconciliation engine.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pulsesync.database import init_db, test_connection, db_url, _mask_url
from pulsesync.scheduler.jobs import start_scheduler, stop_scheduler
from pulsesync.services import close_services
from pulsesync.api.sync_routes import router as sync_router
from pulsesync.core.logging import get_logger

logger = get_logger("main")


IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("PulseSync starting up...")
    logger.info(f"Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"Table creation failed: {e}")
    else:
        logger.error("Database NOT connected, endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    await close_services()
    logger.info("PulseSync shut down")


app = FastAPI(
    title="PulseSync",
    description="Day-partitioned metric record reconciliation between a local store and a remote store.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(sync_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    backend = "postgresql" if db_url.startswith("postgresql") else "sqlite"
    return {
        "status": "healthy",
        "service": "pulsesync",
        "version": "1.0.0",
        "database": {"backend": backend, "url": _mask_url(db_url)},
    }
