# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from app.db.pool import db_health_check
from app.infrastructure.observability.logging import get_logger
from app.services.enrichment.task_runner import task_runner
from app.services.research_client import research_client_health

router = APIRouter()
logger = get_logger(__name__)


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "enrichment-service"}


@router.get("/readyz")
async def readyz():
    """
    Readiness: database pool and research client configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Research client (configuration only, no paid call)
    try:
        research = await research_client_health()
        research_ok = bool(research.get("healthy", False))
        checks["research_client"] = {
            "ok": research_ok,
            "model": research.get("model"),
            "model_allowed": research.get("model_allowed"),
            "credentials_configured": research.get("credentials_configured"),
        }
        overall_ok = overall_ok and research_ok
    except Exception as e:
        checks["research_client"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    checks["background_tasks"] = {"ok": True, "pending": task_runner.pending_count}

    if not overall_ok:
        logger.warning("Readiness check failed", checks=checks)

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
