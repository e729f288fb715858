from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from app.models.domain.enrichment_domain import EnrichmentMeta


class UserRecord(BaseModel):
    """The slice of the users row the enrichment pipeline reads and writes."""

    model_config = ConfigDict(extra="allow")

    user_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    industry: str | None = None
    job_role: str | None = None
    website: str | None = None
    phone: str | None = None
    language: str | None = None
    primary_goal: str | None = None

    profile_enriched: bool = False
    ai_profile: dict[str, Any] | None = None
    last_enrichment_date: datetime | None = None

    @property
    def has_company_data(self) -> bool:
        return bool((self.company or "").strip() and (self.industry or "").strip())

    def enrichment_meta(self) -> EnrichmentMeta | None:
        """Parse the embedded enrichmentMeta; a corrupt entry reads as missing."""
        raw = (self.ai_profile or {}).get("enrichmentMeta")
        if not isinstance(raw, dict):
            return None
        try:
            return EnrichmentMeta.model_validate(raw)
        except ValidationError:
            return None
