"""
Parsing of free-form research output.

The research call returns text that should contain one JSON object, possibly
wrapped in markdown fences or prose. Parsing never raises: it returns either
ParsedResponse or MalformedResponse.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic.alias_generators import to_camel

from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import CompanyProfile

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_KEY_RE = re.compile(r"([{,]\s*)'([^']+)'\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*)'")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")

STRING_FIELD_DEFAULTS: dict[str, str] = {
    "companyDescription": "",
    "targetAudience": "",
    "brandVoice": "Neutral and professional",
    "bestCallTimes": "Mornings 9-12, afternoons 2-5",
    "marketPosition": "",
}

OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "foundedYear",
    "ceoName",
    "employeeCount",
    "headquarters",
    "communicationPreferences",
)

# Keys owned by the pipeline, never taken from research output
RESERVED_KEYS: frozenset[str] = frozenset(
    {
        "customSystemPrompt",
        "enrichmentStatus",
        "enrichmentErrorCode",
        "enrichmentMeta",
        "lastUpdated",
        "qualityScore",
        "qualityDetails",
    }
)

# snake_case spellings of profile fields would bypass the camelCase aliases
SNAKE_CASE_FIELD_KEYS: frozenset[str] = frozenset(
    name for name in CompanyProfile.model_fields if to_camel(name) != name
)

LIST_FIELDS: tuple[str, ...] = (
    "products",
    "services",
    "targetAudienceSegments",
    "decisionMakers",
    "competitors",
    "uniqueSellingPoints",
    "callAngles",
    "effectiveKeywords",
    "opportunities",
    "recentNews",
    "goals",
)


@dataclass(frozen=True)
class ParsedResponse:
    data: dict[str, Any]
    repaired: bool = False


@dataclass(frozen=True)
class MalformedResponse:
    reason: str
    preview: str = ""


ParseOutcome = ParsedResponse | MalformedResponse


def _first_object_block(text: str) -> str | None:
    """Return the first balanced {...} block, honouring JSON string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def _outer_object_span(text: str) -> str | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first : last + 1]


def _repair_json(candidate: str) -> str:
    repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    repaired = _SINGLE_QUOTED_KEY_RE.sub(r'\1"\2":', repaired)
    repaired = _SINGLE_QUOTED_VALUE_RE.sub(r': "\1"', repaired)
    repaired = _UNQUOTED_KEY_RE.sub(r'\1"\2":', repaired)
    return repaired


def _load_object(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_research_response(raw_text: str | None) -> ParseOutcome:
    """
    Extract the first well-formed JSON object from research output.

    Args:
        raw_text: Text returned by the research call

    Returns:
        ParsedResponse with the decoded object, or MalformedResponse with a reason
    """
    if not raw_text or not isinstance(raw_text, str) or not raw_text.strip():
        return MalformedResponse(reason="empty_input")

    text = _FENCE_RE.sub("", raw_text).strip()

    candidates = [block for block in (_first_object_block(text), _outer_object_span(text)) if block]
    if not candidates:
        return MalformedResponse(reason="no_object", preview=text[:200])

    for candidate in candidates:
        data = _load_object(candidate)
        if data is not None:
            return ParsedResponse(data=data)

    for candidate in candidates:
        data = _load_object(_repair_json(candidate))
        if data is not None:
            logger.info("Research response parsed after repair", length=len(candidate))
            return ParsedResponse(data=data, repaired=True)

    return MalformedResponse(reason="parse_failed", preview=candidates[0][:200])


def repair_profile_schema(data: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """
    Ensure every profile field exists with the expected type.

    Missing strings become defaults, a bare string in a list field becomes a
    one-item list, and objection entries are normalised to objection/response
    objects. Placeholders never add quality-gate points.

    Returns:
        (repaired data, names of repaired fields)
    """
    if not isinstance(data, dict):
        return {}, ["root"]

    repaired = {key: value for key, value in data.items() if key not in RESERVED_KEYS}
    fields_repaired: list[str] = []

    for key in sorted(SNAKE_CASE_FIELD_KEYS.intersection(repaired)):
        del repaired[key]
        fields_repaired.append(f"{key}_dropped")

    for field_name in OPTIONAL_TEXT_FIELDS:
        value = repaired.get(field_name)
        if value is None or isinstance(value, str):
            repaired[field_name] = value.strip() if isinstance(value, str) and value.strip() else None
        elif isinstance(value, (int, float)):
            repaired[field_name] = str(value)
        else:
            repaired[field_name] = None
            fields_repaired.append(field_name)

    for field_name, default in STRING_FIELD_DEFAULTS.items():
        value = repaired.get(field_name)
        if isinstance(value, str) and value.strip():
            repaired[field_name] = value.strip()
            continue
        repaired[field_name] = default
        fields_repaired.append(field_name)

    for field_name in LIST_FIELDS:
        value = repaired.get(field_name)
        if isinstance(value, list):
            repaired[field_name] = [str(item).strip() for item in value if _is_text(item)]
        elif isinstance(value, str) and value.strip():
            repaired[field_name] = [value.strip()]
            fields_repaired.append(f"{field_name}_converted")
        else:
            repaired[field_name] = []
            fields_repaired.append(field_name)

    objections = repaired.get("objectionHandling")
    if not isinstance(objections, list):
        repaired["objectionHandling"] = []
        fields_repaired.append("objectionHandling")
    else:
        repaired["objectionHandling"] = [
            _normalize_objection(item, index)
            for index, item in enumerate(objections)
            if item is not None
        ]

    return repaired, fields_repaired


def _is_text(item: Any) -> bool:
    return isinstance(item, (str, int, float)) and str(item).strip() != ""


def _normalize_objection(item: Any, index: int) -> dict[str, str]:
    if isinstance(item, str):
        return {"objection": item, "response": ""}
    if isinstance(item, dict):
        return {
            "objection": str(item.get("objection") or f"Objection {index + 1}"),
            "response": str(item.get("response") or ""),
        }
    return {"objection": str(item), "response": ""}
