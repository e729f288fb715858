"""
Quality gate for enrichment candidates.

Scores a candidate profile 0-10 with additive, per-field capped heuristics and
decides whether it is good enough to be treated as authoritative.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from app.models.domain.enrichment_domain import CompanyProfile, Confidence

PASS_THRESHOLD = 4
MAX_SCORE = 10

# (field, minimum list length, points)
_LIST_RULES: tuple[tuple[str, int, int], ...] = (
    ("products", 5, 1),
    ("services", 3, 1),
    ("uniqueSellingPoints", 5, 1),
    ("competitors", 3, 1),
    ("callAngles", 5, 1),
    ("objectionHandling", 5, 1),
)


@dataclass(frozen=True)
class QualityReport:
    score: int
    passed: bool
    breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def confidence(self) -> Confidence:
        return confidence_from_score(self.score)


def confidence_from_score(score: int) -> Confidence:
    if score >= 7:
        return Confidence.HIGH
    if score >= 4:
        return Confidence.MEDIUM
    return Confidence.LOW


def score_profile(candidate: Mapping[str, Any] | CompanyProfile | None) -> QualityReport:
    """
    Score a candidate profile.

    Args:
        candidate: camelCase mapping (parsed research output) or a CompanyProfile

    Returns:
        QualityReport with score in [0, 10], pass flag and per-field points
    """
    if candidate is None:
        return QualityReport(score=0, passed=False, breakdown={})

    data = candidate.to_document() if isinstance(candidate, CompanyProfile) else candidate
    if not isinstance(data, Mapping):
        return QualityReport(score=0, passed=False, breakdown={})

    breakdown: dict[str, int] = {}

    description = _text_length(data.get("companyDescription"))
    if description >= 300:
        breakdown["companyDescription"] = 2
    elif description >= 120:
        breakdown["companyDescription"] = 1

    for field_name, minimum, points in _LIST_RULES:
        if _list_length(data.get(field_name)) >= minimum:
            breakdown[field_name] = points

    if _text_length(data.get("targetAudience")) >= 100:
        breakdown["targetAudience"] = 1

    score = min(sum(breakdown.values()), MAX_SCORE)
    return QualityReport(score=score, passed=score >= PASS_THRESHOLD, breakdown=breakdown)


def _text_length(value: Any) -> int:
    return len(value) if isinstance(value, str) else 0


def _list_length(value: Any) -> int:
    return len(value) if isinstance(value, list) else 0
