"""
Enrichment service application: admin enrichment API and health endpoints.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import admin_enrich, health
from app.services.enrichment.task_runner import task_runner
from app.services.research_client import close_research_client

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup; drain background work and close clients on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()
    logger.info("All services initialized successfully", services=["database_pool"])

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # Pending retry timers are dropped here; the worker's retry sweep picks them up
    try:
        await task_runner.shutdown()
    except Exception as e:
        logger.error("Error cancelling background tasks", error=str(e))
        shutdown_errors.append(f"Tasks: {e}")

    try:
        await close_research_client()
    except Exception as e:
        logger.error("Error closing research client", error=str(e))
        shutdown_errors.append(f"Research client: {e}")

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Enrichment Service",
    description="Asynchronous company-intelligence enrichment",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(admin_enrich.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
