"""
Knowledge digest: the enriched profile rendered for prompt injection.

Read-only consumer of the enrichment state. While a job is queued or running,
or when there is no profile at all, the digest carries a placeholder and no
business data.
"""

from dataclasses import dataclass
from typing import Any, Literal

from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import status_label
from app.models.domain.user_domain import UserRecord
from app.repositories.enrichment_repository import EnrichmentRepository, enrichment_repository

logger = get_logger(__name__)

DigestMode = Literal["space", "power"]

MAX_CHARS: dict[str, int] = {"space": 3500, "power": 2000}
MAX_BULLETS = 10
TRUNCATION_MARKER = "\n[...truncated...]"

HEADER = "=== USER KNOWLEDGE CONTEXT ==="
FOOTER = "==============================="
PENDING_PLACEHOLDER = "Business intelligence is being researched. No company data available yet."
MISSING_PLACEHOLDER = "No business intelligence available for this user."


@dataclass(frozen=True)
class KnowledgeDigest:
    digest: str
    truncated: bool
    status: str | None
    status_label: str
    has_profile_data: bool


def _snippet(text: Any, max_length: int) -> str:
    if not text or not isinstance(text, str):
        return ""
    cleaned = " ".join(text.split())
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[: max_length - 3] + "..."


def _joined(values: Any, limit: int) -> str:
    if not isinstance(values, list):
        return ""
    return ", ".join(str(value) for value in values[:limit] if value)


def profile_bullets(ai_profile: dict[str, Any] | None) -> list[str]:
    """Business-intelligence bullets from a stored profile document (camelCase keys)."""
    if not ai_profile:
        return []

    candidates = [
        ("Company", _snippet(ai_profile.get("companyDescription"), 200)),
        ("Target Audience", _snippet(ai_profile.get("targetAudience"), 150)),
        ("Products/Services", _joined(ai_profile.get("products"), 5)),
        ("USPs", _joined(ai_profile.get("uniqueSellingPoints"), 3)),
        ("Competitors", _joined(ai_profile.get("competitors"), 4)),
        ("Brand Voice", _snippet(ai_profile.get("brandVoice"), 100)),
        ("Market Position", _snippet(ai_profile.get("marketPosition"), 150)),
        ("Goals", _joined(ai_profile.get("goals"), 3)),
        ("Call Angles", _joined(ai_profile.get("callAngles"), 3)),
        ("Keywords", _joined(ai_profile.get("effectiveKeywords"), 8)),
    ]
    bullets = [f"{label}: {value}" for label, value in candidates if value]
    return bullets[:MAX_BULLETS]


def build_knowledge_digest(
    user: UserRecord | None, mode: DigestMode = "space", max_chars: int | None = None
) -> KnowledgeDigest:
    """
    Render the digest for one user.

    Args:
        user: User record (None renders the missing placeholder)
        mode: "space" (chat) or "power" (calls); selects the character budget
        max_chars: Override the mode budget

    Returns:
        KnowledgeDigest, clamped to the budget with a truncation marker
    """
    budget = max_chars or MAX_CHARS.get(mode, MAX_CHARS["space"])
    ai_profile = (user.ai_profile if user else None) or None
    meta = user.enrichment_meta() if user else None

    status = meta.status if meta else (ai_profile or {}).get("enrichmentStatus")
    label = status_label(status)

    if meta is not None and meta.is_pending:
        body = [PENDING_PLACEHOLDER]
        bullets: list[str] = []
    else:
        bullets = profile_bullets(ai_profile)
        body = [f"  - {bullet}" for bullet in bullets] if bullets else [MISSING_PLACEHOLDER]

    parts = [HEADER, "", f"BUSINESS INTELLIGENCE ({label}):", *body, FOOTER]
    digest = "\n".join(parts)

    truncated = False
    if len(digest) > budget:
        digest = digest[: budget - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        truncated = True

    return KnowledgeDigest(
        digest=digest,
        truncated=truncated,
        status=str(status) if status else None,
        status_label=label,
        has_profile_data=bool(bullets),
    )


async def get_knowledge_digest(
    user_id: str,
    mode: DigestMode = "space",
    repository: EnrichmentRepository | None = None,
) -> KnowledgeDigest:
    """Load the user and render the digest."""
    repository = repository or enrichment_repository
    user = await repository.get_user(user_id)
    if user is None:
        logger.warning("Knowledge digest requested for unknown user", user_id=user_id)

    result = build_knowledge_digest(user, mode)
    logger.info(
        "Knowledge digest built",
        user_id=user_id,
        mode=mode,
        status=result.status,
        chars=len(result.digest),
        truncated=result.truncated,
    )
    return result
