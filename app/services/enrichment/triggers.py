"""
Entry points that start enrichment jobs.

- Registration: ``initial_enrichment_meta`` for the stub stored with the new
  user, then ``trigger_after_registration`` once the row exists.
- Admin: ``force_re_enrich``.

Both return as soon as the job is scheduled; the job itself runs detached.
"""

import asyncio
from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import EnrichmentInput, EnrichmentMeta, EnrichmentStatus
from app.models.domain.user_domain import UserRecord
from app.services.enrichment.orchestrator import EnrichmentOrchestrator, enrichment_orchestrator

logger = get_logger(__name__)


class EnrichmentServiceError(Exception):
    """Base exception for enrichment trigger operations."""

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


class EnrichmentUserNotFoundError(EnrichmentServiceError):
    pass


class EnrichmentConflictError(EnrichmentServiceError):
    """Already enriched (without force) or an attempt is running."""


class EnrichmentInputError(EnrichmentServiceError):
    """User lacks the company/industry data enrichment needs."""


def initial_enrichment_meta(
    company: str | None, industry: str | None, *, now: datetime | None = None
) -> EnrichmentMeta | None:
    """Queued stub for a new user; None unless both company and industry are present."""
    if not (company or "").strip() or not (industry or "").strip():
        return None
    return EnrichmentMeta(
        status=EnrichmentStatus.QUEUED,
        last_updated=now or datetime.now(UTC),
        attempts=0,
    )


def trigger_enrichment_async(
    enrichment_input: EnrichmentInput,
    orchestrator: EnrichmentOrchestrator | None = None,
) -> asyncio.Task:
    """Schedule a job without waiting for it."""
    orchestrator = orchestrator or enrichment_orchestrator
    logger.info(
        "Enrichment job triggered",
        user_id=enrichment_input.user_id,
        has_company=bool(enrichment_input.company),
        has_industry=bool(enrichment_input.industry),
    )
    return orchestrator.runner.spawn(
        orchestrator.run_job(enrichment_input),
        name=f"enrichment-{enrichment_input.user_id}",
    )


def trigger_after_registration(
    user: UserRecord, orchestrator: EnrichmentOrchestrator | None = None
) -> asyncio.Task | None:
    """Auto-trigger for a freshly created user; no-op without company and industry."""
    if not user.has_company_data:
        logger.info("Enrichment not triggered", user_id=user.user_id, reason="missing_company_data")
        return None
    return trigger_enrichment_async(EnrichmentInput.from_user(user), orchestrator)


async def force_re_enrich(
    user_id: str,
    force: bool = False,
    orchestrator: EnrichmentOrchestrator | None = None,
) -> EnrichmentMeta:
    """
    Administrative (re-)enrichment.

    Args:
        user_id: Target user
        force: Reset attempts and start over even if already enriched
        orchestrator: Orchestrator to run the job on

    Returns:
        The meta the job starts from

    Raises:
        EnrichmentUserNotFoundError: user does not exist
        EnrichmentConflictError: already enriched without force, or an attempt is running
        EnrichmentInputError: user lacks company or industry
    """
    orchestrator = orchestrator or enrichment_orchestrator
    repository = orchestrator.repository

    user = await repository.get_user(user_id)
    if user is None:
        raise EnrichmentUserNotFoundError("User not found", user_id=user_id)

    if user.profile_enriched and not force:
        logger.info("Re-enrichment refused", user_id=user_id, reason="already_enriched")
        raise EnrichmentConflictError(
            "Profile already enriched. Use force=true to re-enrich.", user_id=user_id
        )

    if not user.has_company_data:
        raise EnrichmentInputError(
            "User has no company or industry data for enrichment", user_id=user_id
        )

    meta = user.enrichment_meta()

    if force:
        meta = EnrichmentMeta(
            status=EnrichmentStatus.QUEUED,
            last_updated=datetime.now(UTC),
            attempts=0,
        )
        if not await repository.reset_for_reenrich(user_id, meta):
            raise EnrichmentConflictError("Enrichment already in progress", user_id=user_id)
        logger.info("Enrichment state reset for forced re-enrichment", user_id=user_id)

    elif meta is not None and meta.status == EnrichmentStatus.IN_PROGRESS:
        raise EnrichmentConflictError("Enrichment already in progress", user_id=user_id)

    trigger_enrichment_async(EnrichmentInput.from_user(user), orchestrator)
    return meta or EnrichmentMeta(status=EnrichmentStatus.QUEUED, attempts=0)
