"""
Enrichment retry sweep.

In-process retry timers die with the process. This job runs in the worker and
makes persisted state authoritative:

1. Users whose ``nextRetryAt`` has passed are re-run. The persisted value is
   passed as ``expected_retry_at`` and the attempt claim is a compare-and-swap,
   so a timer and the sweep firing together still run the retry once.
2. Attempts left ``in_progress`` by a dead process are closed as
   failed/unknown, with the usual retry decision.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import EnrichmentInput
from app.models.domain.user_domain import UserRecord
from app.services.enrichment.orchestrator import EnrichmentOrchestrator, enrichment_orchestrator
from app.services.enrichment.task_runner import task_runner
from app.services.research_client import close_research_client

logger = get_logger(__name__)

# Job configuration
MAX_CONCURRENT_RETRIES = 5
MAX_PROCESSING_TIME_MINUTES = 20
ERROR_BACKOFF_SECONDS = 300


class RetrySweepMetrics:
    """Counters for one sweep run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.due_found = 0
        self.retries_started = 0
        self.retries_skipped = 0
        self.stale_found = 0
        self.stale_released = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0

    def record_processing_error(self, user_id: str, operation: str, error: str):
        self.processing_errors += 1
        logger.error(
            "Enrichment retry sweep error",
            user_id=user_id,
            operation=operation,
            error=error,
            job_run="enrichment_retry_sweep",
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "enrichment_retry_sweep",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "due_found": self.due_found,
            "retries_started": self.retries_started,
            "retries_skipped": self.retries_skipped,
            "stale_found": self.stale_found,
            "stale_released": self.stale_released,
            "processing_errors": self.processing_errors,
        }


class EnrichmentRetrySweepJob:
    def __init__(self, orchestrator: EnrichmentOrchestrator | None = None):
        self.orchestrator = orchestrator or enrichment_orchestrator
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = RetrySweepMetrics()

    async def run_once(self) -> dict:
        """
        Run a single sweep.

        Returns:
            Dict: sweep metrics
        """
        if self.is_running:
            logger.warning("Enrichment retry sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            await asyncio.wait_for(self._sweep(), timeout=MAX_PROCESSING_TIME_MINUTES * 60)

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            logger.info("Enrichment retry sweep completed", **metrics)
            return metrics

        except TimeoutError:
            logger.error(
                "Enrichment retry sweep timed out", timeout_minutes=MAX_PROCESSING_TIME_MINUTES
            )
            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            metrics["job_error"] = f"Timed out after {MAX_PROCESSING_TIME_MINUTES} minutes"
            return metrics

        except Exception as e:
            logger.error(
                "Enrichment retry sweep failed", error=str(e), error_type=type(e).__name__
            )
            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            metrics["job_error"] = str(e)
            return metrics

        finally:
            self.is_running = False

    async def _sweep(self) -> None:
        now = self.orchestrator.clock()
        repository = self.orchestrator.repository
        batch_size = settings.ENRICH_RETRY_SWEEP_BATCH_SIZE

        stale_before = now - timedelta(minutes=settings.ENRICH_STALE_IN_PROGRESS_MINUTES)
        stale_users = await repository.list_stale_in_progress(stale_before, batch_size)
        self.job_metrics.stale_found = len(stale_users)
        for user in stale_users:
            await self._release_stale(user)

        due_users = await repository.list_due_retries(now, batch_size)
        self.job_metrics.due_found = len(due_users)

        semaphore = asyncio.Semaphore(MAX_CONCURRENT_RETRIES)

        async def _bounded(user: UserRecord) -> None:
            async with semaphore:
                await self._retry(user)

        await asyncio.gather(*(_bounded(user) for user in due_users))

    async def _release_stale(self, user: UserRecord) -> None:
        try:
            if await self.orchestrator.release_stale(user):
                self.job_metrics.stale_released += 1
        except Exception as e:
            self.job_metrics.record_processing_error(user.user_id, "release_stale", str(e))

    async def _retry(self, user: UserRecord) -> None:
        meta = user.enrichment_meta()
        if meta is None or meta.next_retry_at is None:
            self.job_metrics.retries_skipped += 1
            return

        try:
            result = await self.orchestrator.run_job(
                EnrichmentInput.from_user(user), expected_retry_at=meta.next_retry_at
            )
        except Exception as e:
            self.job_metrics.record_processing_error(user.user_id, "retry", str(e))
            return

        if result is None:
            self.job_metrics.retries_skipped += 1
        else:
            self.job_metrics.retries_started += 1


# Global job instance
enrichment_retry_sweep_job = EnrichmentRetrySweepJob()


async def run_enrichment_retry_sweep() -> dict:
    """Run one sweep (cron-style entry point)."""
    return await enrichment_retry_sweep_job.run_once()


async def start_enrichment_retry_scheduler() -> None:
    """
    Run the sweep forever in the worker process.

    Opens the database pool for this process and closes it on exit.
    """
    interval = settings.ENRICH_RETRY_SWEEP_INTERVAL_SECONDS
    logger.info("Starting enrichment retry sweep scheduler", interval_seconds=interval)

    await db_pool.initialize()
    try:
        while True:
            try:
                await run_enrichment_retry_sweep()
                await asyncio.sleep(interval)
            except Exception as e:
                logger.error(
                    "Error in enrichment retry sweep scheduler",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
    finally:
        await task_runner.shutdown()
        await close_research_client()
        await db_pool.close()
