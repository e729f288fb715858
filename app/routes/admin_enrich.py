"""
admin_enrich.py
---------------
Purpose:
    Admin endpoints to (re-)start company enrichment and inspect its state.

Usage:
    1. POST /admin/users/{user_id}/enrich - Start enrichment ({"force": true} to re-enrich)
    2. GET /admin/users/{user_id}/enrichment-status - Current state plus a display label
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import admin_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.enrichment_request import EnrichRequest
from app.models.api.enrichment_response import (
    EnrichmentMetaResponse,
    EnrichmentStatusResponse,
    EnrichTriggerResponse,
)
from app.models.domain.enrichment_domain import EnrichmentErrorCode, EnrichmentStatus, status_label
from app.services.enrichment.orchestrator import enrichment_orchestrator
from app.services.enrichment.triggers import (
    EnrichmentConflictError,
    EnrichmentInputError,
    EnrichmentUserNotFoundError,
    force_re_enrich,
)

router = APIRouter(prefix="/admin", tags=["admin-enrichment"])
logger = get_logger(__name__)


@router.post(
    "/users/{user_id}/enrich",
    response_model=EnrichTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enrich_user(
    user_id: str,
    body: EnrichRequest | None = None,
    claims: dict = Depends(admin_dependency),
):
    """
    Start enrichment for a user. Returns before the job runs.

    Raises:
        404: User not found
        409: Already enriched and force not set, or enrichment in progress
        400: User has no company or industry
    """
    force = bool(body and body.force)

    try:
        await force_re_enrich(user_id, force=force, orchestrator=enrichment_orchestrator)
    except EnrichmentUserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except EnrichmentConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except EnrichmentInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except Exception as e:
        logger.error("Failed to start enrichment", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to start enrichment"
        ) from e

    logger.info(
        "Admin enrichment started",
        admin_user_id=claims.get("sub"),
        target_user_id=user_id,
        force=force,
    )
    return EnrichTriggerResponse(success=True, message="Enrichment job started")


@router.get("/users/{user_id}/enrichment-status", response_model=EnrichmentStatusResponse)
async def get_enrichment_status(user_id: str, claims: dict = Depends(admin_dependency)):
    """
    Current enrichment state.

    profileEnriched is only true once the status is live_research.

    Raises:
        404: User not found
    """
    user = await enrichment_orchestrator.repository.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    meta = user.enrichment_meta()
    ai_profile = user.ai_profile or {}

    try:
        effective_status = EnrichmentStatus(meta.status if meta else ai_profile.get("enrichmentStatus"))
    except ValueError:
        effective_status = EnrichmentStatus.FALLBACK

    try:
        error_code = EnrichmentErrorCode(
            meta.error_code if meta else ai_profile.get("enrichmentErrorCode")
        )
    except ValueError:
        error_code = None

    return EnrichmentStatusResponse(
        user_id=user_id,
        profile_enriched=effective_status == EnrichmentStatus.LIVE_RESEARCH and user.profile_enriched,
        enrichment_status=effective_status,
        status_label=status_label(effective_status),
        enrichment_error_code=error_code,
        enrichment_meta=EnrichmentMetaResponse.from_meta(meta),
        last_enrichment_date=user.last_enrichment_date,
    )
