"""
Domain models for the company-intelligence enrichment pipeline.

The persisted shape lives inside the user's ``ai_profile`` JSONB document and
uses camelCase keys, so every model here round-trips through aliases.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EnrichmentStatus(StrEnum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    LIVE_RESEARCH = "live_research"
    FALLBACK = "fallback"
    FAILED = "failed"
    TIMEOUT = "timeout"


class EnrichmentErrorCode(StrEnum):
    MODEL_NOT_ALLOWED = "model_not_allowed"
    AUTH = "auth"
    TIMEOUT = "timeout"
    QUOTA = "quota"
    PARSE = "parse"
    QUALITY_GATE_FAILED = "quality_gate_failed"
    UNKNOWN = "unknown"


class Confidence(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


NON_RETRYABLE_ERROR_CODES = frozenset(
    {
        EnrichmentErrorCode.QUOTA,
        EnrichmentErrorCode.AUTH,
        EnrichmentErrorCode.MODEL_NOT_ALLOWED,
    }
)

PENDING_STATUSES = frozenset({EnrichmentStatus.QUEUED, EnrichmentStatus.IN_PROGRESS})


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON document stored in ai_profile."""
        return self.model_dump(mode="json", by_alias=True)


class EnrichmentInput(BaseModel):
    """Immutable input for one enrichment job. Absent values are empty strings or None."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    company: str = ""
    industry: str = ""
    role: str = ""
    website: str | None = None
    phone: str = ""
    language: str = "de"
    primary_goal: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> "EnrichmentInput":
        """Build the job input from a UserRecord."""
        return cls(
            user_id=user.user_id,
            company=user.company or "",
            industry=user.industry or "",
            role=user.job_role or "",
            website=user.website or None,
            phone=user.phone or "",
            language=user.language or "de",
            primary_goal=user.primary_goal or "",
            first_name=user.first_name or "",
            last_name=user.last_name or "",
            email=user.email or None,
        )

    @property
    def has_company_data(self) -> bool:
        return bool(self.company.strip() and self.industry.strip())


class EnrichmentMeta(_CamelModel):
    """Persisted job state, embedded in the profile document under ``enrichmentMeta``."""

    status: EnrichmentStatus = EnrichmentStatus.QUEUED
    error_code: EnrichmentErrorCode | None = None
    last_updated: datetime | None = None
    attempts: int = 0
    next_retry_at: datetime | None = None
    confidence: Confidence | None = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES


class ObjectionResponse(_CamelModel):
    objection: str
    response: str


class CompanyProfile(_CamelModel):
    """Business payload produced by enrichment (live research or fallback)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    company_description: str = ""
    products: list[str] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    target_audience: str = ""
    target_audience_segments: list[str] = Field(default_factory=list)
    decision_makers: list[str] = Field(default_factory=list)
    brand_voice: str = ""
    custom_system_prompt: str = ""
    effective_keywords: list[str] = Field(default_factory=list)
    best_call_times: str = ""
    goals: list[str] = Field(default_factory=list)
    competitors: list[str] = Field(default_factory=list)
    unique_selling_points: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    communication_preferences: str | None = None
    market_position: str | None = None
    recent_news: list[str] = Field(default_factory=list)
    founded_year: str | None = None
    ceo_name: str | None = None
    employee_count: str | None = None
    headquarters: str | None = None

    # Outbound playbook, only on successful enrichment
    call_angles: list[str] = Field(default_factory=list)
    objection_handling: list[ObjectionResponse] = Field(default_factory=list)
    quality_score: int | None = None
    quality_details: dict[str, int] | None = None

    enrichment_status: EnrichmentStatus = EnrichmentStatus.FALLBACK
    enrichment_error_code: EnrichmentErrorCode | None = None
    last_updated: datetime | None = None
    enrichment_meta: EnrichmentMeta | None = None


class EnrichmentResult(BaseModel):
    """Outcome of one Executor attempt. Folded into profile + meta, never stored as-is."""

    profile: CompanyProfile | None
    success: bool
    status: EnrichmentStatus
    error_code: EnrichmentErrorCode | None = None
    confidence: Confidence = Confidence.LOW
    quality_score: int | None = None
    quality_details: dict[str, int] | None = None


STATUS_LABELS: dict[EnrichmentStatus, str] = {
    EnrichmentStatus.LIVE_RESEARCH: "Up to date",
    EnrichmentStatus.QUEUED: "In progress",
    EnrichmentStatus.IN_PROGRESS: "In progress",
}


def status_label(status: EnrichmentStatus | str | None) -> str:
    """Human-readable label shown to admins and in the knowledge digest."""
    try:
        return STATUS_LABELS.get(EnrichmentStatus(status), "Limited")
    except ValueError:
        return "Limited"
