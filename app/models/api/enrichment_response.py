# app/models/api/enrichment_response.py
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.models.domain.enrichment_domain import (
    Confidence,
    EnrichmentErrorCode,
    EnrichmentMeta,
    EnrichmentStatus,
)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EnrichTriggerResponse(_CamelResponse):
    """Response for POST /admin/users/{user_id}/enrich (202)"""

    success: bool
    message: str
    status: Literal["queued"] = "queued"


class EnrichmentMetaResponse(_CamelResponse):
    status: EnrichmentStatus | None = None
    error_code: EnrichmentErrorCode | None = None
    last_updated: datetime | None = None
    attempts: int = 0
    next_retry_at: datetime | None = None
    confidence: Confidence | None = None

    @classmethod
    def from_meta(cls, meta: EnrichmentMeta | None) -> "EnrichmentMetaResponse":
        if meta is None:
            return cls()
        return cls.model_validate(meta.model_dump())


class EnrichmentStatusResponse(_CamelResponse):
    """Response for GET /admin/users/{user_id}/enrichment-status"""

    success: bool = True
    user_id: str
    profile_enriched: bool
    enrichment_status: EnrichmentStatus
    status_label: str
    enrichment_error_code: EnrichmentErrorCode | None = None
    enrichment_meta: EnrichmentMetaResponse
    last_enrichment_date: datetime | None = None
