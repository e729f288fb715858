"""
Enrichment job orchestrator.

Owns the job state machine:

    queued -> in_progress -> live_research | fallback | failed | timeout

Every transition is persisted before the next step runs. The transition into
in_progress is a compare-and-swap on the attempts counter, so two triggers
racing for the same user cannot both run an attempt. Failed attempts that are
worth retrying get a persisted ``nextRetryAt`` and an in-process timer; the
worker's retry sweep picks up whatever a restart dropped.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger, log_enrichment_transition
from app.models.domain.enrichment_domain import (
    CompanyProfile,
    Confidence,
    EnrichmentErrorCode,
    EnrichmentInput,
    EnrichmentMeta,
    EnrichmentResult,
    EnrichmentStatus,
)
from app.models.domain.user_domain import UserRecord
from app.repositories.enrichment_repository import EnrichmentRepository, enrichment_repository
from app.services.enrichment.executor import EnrichmentExecutor, enrichment_executor
from app.services.enrichment.fallback_profile import build_fallback_profile
from app.services.enrichment.retry_policy import (
    compute_next_retry_at,
    should_start_attempt,
    skip_reason,
)
from app.services.enrichment.task_runner import DetachedTaskRunner, task_runner

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EnrichmentOrchestrator:
    def __init__(
        self,
        repository: EnrichmentRepository | None = None,
        executor: EnrichmentExecutor | None = None,
        runner: DetachedTaskRunner | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository or enrichment_repository
        self.executor = executor or enrichment_executor
        self.runner = runner or task_runner
        self.clock = clock

    async def run_job(
        self,
        enrichment_input: EnrichmentInput,
        expected_retry_at: datetime | None = None,
    ) -> EnrichmentMeta | None:
        """
        Run one enrichment attempt for a user if the current state allows it.

        Args:
            enrichment_input: Job input
            expected_retry_at: Set by retry timers and the retry sweep; the
                attempt is skipped when the persisted nextRetryAt differs

        Returns:
            The persisted terminal meta, or None when no attempt ran
        """
        user_id = enrichment_input.user_id

        try:
            user = await self.repository.get_user(user_id)
        except Exception as e:
            logger.exception("Enrichment job could not load user", user_id=user_id, error=str(e))
            return None

        if user is None:
            logger.warning("Enrichment job skipped", user_id=user_id, reason="user_not_found")
            return None

        meta = user.enrichment_meta()

        if expected_retry_at is not None and (meta is None or meta.next_retry_at != expected_retry_at):
            logger.info(
                "Enrichment job skipped",
                user_id=user_id,
                reason="retry_superseded",
                expected_retry_at=expected_retry_at.isoformat(),
            )
            return None

        if not should_start_attempt(meta):
            logger.info(
                "Enrichment job skipped",
                user_id=user_id,
                reason=skip_reason(meta),
                attempts=meta.attempts if meta else 0,
                status=meta.status.value if meta else None,
                error_code=meta.error_code.value if meta and meta.error_code else None,
            )
            return None

        previous_attempts = meta.attempts if meta else 0
        attempt = previous_attempts + 1
        claimed_meta = (meta or EnrichmentMeta()).model_copy(
            update={
                "status": EnrichmentStatus.IN_PROGRESS,
                "error_code": None,
                "attempts": attempt,
                "last_updated": self.clock(),
                "next_retry_at": None,
                "confidence": None,
            }
        )

        try:
            claimed = await self.repository.claim_attempt(user_id, previous_attempts, claimed_meta)
        except Exception as e:
            logger.exception("Enrichment attempt claim failed", user_id=user_id, error=str(e))
            return None

        if not claimed:
            return None

        log_enrichment_transition(user_id, EnrichmentStatus.IN_PROGRESS, attempt)
        start_time = time.monotonic()

        try:
            result = await self.executor.execute(enrichment_input, attempt)
            return await self._store_outcome(enrichment_input, attempt, result, start_time)
        except Exception as e:
            logger.exception(
                "Enrichment job crashed",
                user_id=user_id,
                attempt=attempt,
                error=str(e)[:200],
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            return await self._store_crash(enrichment_input, attempt)

    async def _store_outcome(
        self,
        enrichment_input: EnrichmentInput,
        attempt: int,
        result: EnrichmentResult,
        start_time: float,
    ) -> EnrichmentMeta | None:
        user_id = enrichment_input.user_id
        now = self.clock()

        profile = result.profile
        if not result.success and (
            profile is None or profile.enrichment_status != EnrichmentStatus.FALLBACK
        ):
            profile = build_fallback_profile(
                enrichment_input, result.error_code or EnrichmentErrorCode.UNKNOWN, now=now
            )

        next_retry_at = compute_next_retry_at(attempt, result.success, result.error_code, now)
        meta = EnrichmentMeta(
            status=result.status,
            error_code=result.error_code,
            last_updated=now,
            attempts=attempt,
            next_retry_at=next_retry_at,
            confidence=result.confidence,
        )

        stored = await self.repository.save_profile(
            user_id,
            attempt,
            _with_meta(profile, meta, success=result.success),
            enriched=result.success,
            now=now,
        )
        if not stored:
            return None

        log_enrichment_transition(
            user_id,
            meta.status,
            attempt,
            error_code=meta.error_code,
            confidence=meta.confidence.value if meta.confidence else None,
            quality_score=result.quality_score,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )

        if next_retry_at is not None:
            self._schedule_retry(enrichment_input, next_retry_at, now)

        return meta

    async def _store_crash(self, enrichment_input: EnrichmentInput, attempt: int) -> EnrichmentMeta | None:
        """Persist failed/unknown for a claimed attempt that blew up; unknown errors stay retryable."""
        user_id = enrichment_input.user_id
        now = self.clock()
        next_retry_at = compute_next_retry_at(attempt, False, EnrichmentErrorCode.UNKNOWN, now)
        meta = EnrichmentMeta(
            status=EnrichmentStatus.FAILED,
            error_code=EnrichmentErrorCode.UNKNOWN,
            last_updated=now,
            attempts=attempt,
            next_retry_at=next_retry_at,
            confidence=Confidence.LOW,
        )
        profile = build_fallback_profile(enrichment_input, EnrichmentErrorCode.UNKNOWN, now=now)

        try:
            stored = await self.repository.save_profile(
                user_id, attempt, _with_meta(profile, meta, success=False), enriched=False, now=now
            )
        except Exception as e:
            logger.exception(
                "Enrichment crash state could not be stored", user_id=user_id, error=str(e)
            )
            return None

        if not stored:
            return None

        log_enrichment_transition(
            user_id,
            meta.status,
            attempt,
            error_code=meta.error_code,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
        )

        if next_retry_at is not None:
            self._schedule_retry(enrichment_input, next_retry_at, now)

        return meta

    async def release_stale(self, user: UserRecord) -> EnrichmentMeta | None:
        """
        Close an attempt left in_progress by a dead process as failed/unknown.

        The usual retry decision applies, so the job gets another attempt
        when its budget allows.
        """
        meta = user.enrichment_meta()
        if meta is None or meta.status != EnrichmentStatus.IN_PROGRESS:
            return None

        enrichment_input = EnrichmentInput.from_user(user)
        now = self.clock()
        released = EnrichmentMeta(
            status=EnrichmentStatus.FAILED,
            error_code=EnrichmentErrorCode.UNKNOWN,
            last_updated=now,
            attempts=meta.attempts,
            next_retry_at=compute_next_retry_at(
                meta.attempts, False, EnrichmentErrorCode.UNKNOWN, now
            ),
            confidence=Confidence.LOW,
        )
        profile = build_fallback_profile(enrichment_input, EnrichmentErrorCode.UNKNOWN, now=now)

        stored = await self.repository.save_profile(
            user.user_id,
            meta.attempts,
            _with_meta(profile, released, success=False),
            enriched=False,
            now=now,
        )
        if not stored:
            return None

        log_enrichment_transition(
            user.user_id,
            released.status,
            released.attempts,
            error_code=released.error_code,
            reason="stale_in_progress",
        )
        return released

    def _schedule_retry(
        self, enrichment_input: EnrichmentInput, next_retry_at: datetime, now: datetime
    ) -> None:
        delay_seconds = (next_retry_at - now).total_seconds()
        logger.info(
            "Enrichment retry scheduled",
            user_id=enrichment_input.user_id,
            delay_seconds=delay_seconds,
            next_retry_at=next_retry_at.isoformat(),
        )
        self.runner.spawn_later(
            delay_seconds,
            lambda: self.run_job(enrichment_input, expected_retry_at=next_retry_at),
            name=f"enrichment-retry-{enrichment_input.user_id}",
        )


def _with_meta(profile: CompanyProfile, meta: EnrichmentMeta, *, success: bool) -> CompanyProfile:
    return profile.model_copy(
        update={
            "enrichment_status": (
                EnrichmentStatus.LIVE_RESEARCH if success else EnrichmentStatus.FALLBACK
            ),
            "enrichment_error_code": meta.error_code,
            "last_updated": meta.last_updated,
            "enrichment_meta": meta,
        }
    )


# Shared instance for application use
enrichment_orchestrator = EnrichmentOrchestrator()
