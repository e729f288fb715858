"""
Builds the natural-language research request and the derived system prompt.
"""

from app.config import settings
from app.models.domain.enrichment_domain import EnrichmentInput

LANGUAGE_NAMES = {"de": "German", "en": "English", "fr": "French"}

RESEARCH_SYSTEM_MESSAGE = """### Role
You are a business-intelligence research engine for an outbound calling assistant.
Research the company described by the user and produce one complete company and outbound profile.

### Output Requirements
- Return ONLY valid JSON (no backticks, no prose, no markdown formatting)
- Use the exact keys of the schema below
- Unknown string fields: "" ; unknown list fields: []
"""

OUTPUT_SCHEMA = """{
  "companyDescription": "string, at least 300 characters",
  "foundedYear": "string",
  "ceoName": "string",
  "employeeCount": "string",
  "headquarters": "string",
  "products": ["at least 5 strings"],
  "services": ["at least 5 strings"],
  "targetAudience": "string, at least 100 characters",
  "targetAudienceSegments": ["at least 3 strings"],
  "decisionMakers": ["strings"],
  "competitors": ["at least 3 strings"],
  "uniqueSellingPoints": ["at least 5 strings"],
  "brandVoice": "string",
  "callAngles": ["at least 5 cold-call openers"],
  "objectionHandling": [{"objection": "string", "response": "string"}],
  "bestCallTimes": "string",
  "effectiveKeywords": ["at least 10 strings"],
  "opportunities": ["strings"],
  "marketPosition": "string",
  "recentNews": ["strings"],
  "confidence": "number between 0 and 1"
}"""


def language_name(code: str | None) -> str:
    code = (code or "").strip().lower()
    return LANGUAGE_NAMES.get(code, code or "English")


def normalize_website(website: str | None) -> str | None:
    """Prefix a bare domain with https://; blank input becomes None."""
    if not website or not website.strip():
        return None
    website = website.strip()
    if website.startswith(("http://", "https://")):
        return website
    return f"https://{website}"


def build_research_request(enrichment_input: EnrichmentInput) -> str:
    """Build the single research request embedding the input and the output schema."""
    website = normalize_website(enrichment_input.website)
    website_line = (
        f"Website: {website}"
        if website
        else f'Website: not provided (search for "{enrichment_input.company}" online)'
    )
    contact = f"{enrichment_input.first_name} {enrichment_input.last_name}".strip() or "unknown"
    output_language = language_name(enrichment_input.language)

    return f"""### Company
Company: {enrichment_input.company}
{website_line}
Industry: {enrichment_input.industry}
Contact person: {contact} ({enrichment_input.role or "unknown role"})
Primary goal: {enrichment_input.primary_goal or "not specified"}

### Analyse
1. Company DNA: description (at least 300 characters), founding year, CEO, headcount, locations
2. Products and services: at least 5 each, with a short description
3. Target audience: primary audience, at least 3 segments, decision makers, pain points
4. Competition: at least 3 direct competitors, market position, differentiation
5. Outbound playbook: 5+ call angles, 5+ objections with responses, best call times, brand voice
6. Keywords: at least 10, industry, product and problem oriented
7. Opportunities and recent company news

### JSON Schema
{OUTPUT_SCHEMA}

Write all text in {output_language}."""


def build_system_prompt(
    enrichment_input: EnrichmentInput,
    company_description: str,
    target_audience: str,
    brand_voice: str,
) -> str:
    """Derived system prompt stored on the profile for chat and calls."""
    full_name = f"{enrichment_input.first_name} {enrichment_input.last_name}".strip()
    first_name = enrichment_input.first_name or "the user"
    company = enrichment_input.company or "the company"
    assistant = settings.ASSISTANT_NAME

    return f"""You are {assistant}, the personal AI assistant of {full_name or "this user"}.

ABOUT THE USER:
Name: {full_name}
Company: {enrichment_input.company}
Industry: {enrichment_input.industry}
Role: {enrichment_input.role}

ABOUT THE COMPANY:
{company_description}

Target audience: {target_audience}
Brand voice: {brand_voice}

PRIMARY GOAL: {enrichment_input.primary_goal}

LANGUAGE: {language_name(enrichment_input.language)}

You are the personal AI of {first_name} at {company}. Always refer to this business context."""
