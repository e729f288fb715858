"""
Fallback profile builder.

Deterministic, template-based substitute used whenever live research cannot
produce an acceptable profile. The template is shaped to stay below the
quality-gate pass threshold: fewer than 3 services and competitors, and no
outbound playbook.
"""

from datetime import UTC, datetime

from app.models.domain.enrichment_domain import (
    CompanyProfile,
    Confidence,
    EnrichmentErrorCode,
    EnrichmentInput,
    EnrichmentMeta,
    EnrichmentStatus,
)
from app.services.enrichment.prompt_builder import build_system_prompt


def _goal_label(primary_goal: str) -> str:
    goal = (primary_goal or "").replace("_", " ").strip()
    return goal or "strategic growth"


def build_fallback_profile(
    enrichment_input: EnrichmentInput,
    error_code: EnrichmentErrorCode | None,
    *,
    now: datetime | None = None,
) -> CompanyProfile:
    """
    Build a generic-but-coherent profile from the input fields only.

    Args:
        enrichment_input: Job input (fields may all be empty)
        error_code: Reason the fallback is used
        now: Timestamp to stamp on the profile

    Returns:
        CompanyProfile tagged enrichmentStatus=fallback
    """
    now = now or datetime.now(UTC)
    company = enrichment_input.company.strip() or "The company"
    industry = enrichment_input.industry.strip()
    industry_phrase = f"the {industry} industry" if industry else "its industry"
    role = enrichment_input.role.strip()
    goal = _goal_label(enrichment_input.primary_goal)

    team_sentence = (
        f"As {role} at {company}, the team focuses on {goal}."
        if role
        else f"The team at {company} focuses on {goal}."
    )
    description = (
        f"{company} is an innovative company in {industry_phrase}. {team_sentence} "
        "The company stands for modern approaches and customer-oriented solutions."
    )
    target_audience = (
        f"Decision makers in {industry_phrase}, B2B customers focused on innovation and efficiency"
    )
    brand_voice = "Professional, innovative and customer-oriented with a personal touch"

    keywords = [company, industry, goal, "Innovation", "Efficiency", "Solutions", "Strategy", "Growth"]

    return CompanyProfile(
        company_description=description,
        products=[f"{industry or 'Industry'} solutions", "Premium services", "Consulting"],
        services=["Strategy consulting", "Implementation and support"],
        target_audience=target_audience,
        brand_voice=brand_voice,
        custom_system_prompt=build_system_prompt(
            enrichment_input, description, target_audience, brand_voice
        ),
        effective_keywords=[keyword for keyword in keywords if keyword],
        best_call_times="Tuesday to Thursday, 2pm to 4pm",
        goals=["Grow market share", "Increase customer satisfaction", "Drive innovation"],
        competitors=["Established providers", "Innovative start-ups"],
        unique_selling_points=[
            "Customer focus",
            f"Expertise in {industry or 'the industry'}",
            "Innovative approaches",
        ],
        opportunities=["Digital transformation", "Market expansion", "Strategic partnerships"],
        communication_preferences="Professional, direct, solution-oriented",
        enrichment_status=EnrichmentStatus.FALLBACK,
        enrichment_error_code=error_code,
        last_updated=now,
        enrichment_meta=EnrichmentMeta(
            status=EnrichmentStatus.FALLBACK,
            error_code=error_code,
            last_updated=now,
            attempts=1,
            confidence=Confidence.LOW,
        ),
    )
