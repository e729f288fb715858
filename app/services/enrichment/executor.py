"""
Enrichment executor: performs one enrichment attempt.

Steps, in order: model allow-list, credentials, request build, research call
raced against a timeout (retried in-call with linear backoff), tagged parse,
schema repair, quality gate, profile assembly. No state is written here.
"""

import asyncio
import time
from datetime import UTC, datetime

from pydantic import ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import (
    CompanyProfile,
    Confidence,
    EnrichmentErrorCode,
    EnrichmentInput,
    EnrichmentMeta,
    EnrichmentResult,
    EnrichmentStatus,
)
from app.services.enrichment.fallback_profile import build_fallback_profile
from app.services.enrichment.prompt_builder import build_research_request, build_system_prompt
from app.services.enrichment.quality_gate import QualityReport, score_profile
from app.services.enrichment.response_parser import (
    MalformedResponse,
    parse_research_response,
    repair_profile_schema,
)
from app.services.research_client import (
    CODE_AUTH,
    CODE_MODEL_NOT_FOUND,
    CODE_QUOTA,
    CODE_TIMEOUT,
    ResearchClient,
    ResearchClientError,
    ResearchResponse,
    research_client,
)

logger = get_logger(__name__)

_CALL_CODE_TO_ERROR = {
    CODE_AUTH: EnrichmentErrorCode.AUTH,
    CODE_QUOTA: EnrichmentErrorCode.QUOTA,
    CODE_MODEL_NOT_FOUND: EnrichmentErrorCode.MODEL_NOT_ALLOWED,
    CODE_TIMEOUT: EnrichmentErrorCode.TIMEOUT,
}


class _CallFailed(Exception):
    def __init__(self, error_code: EnrichmentErrorCode):
        super().__init__(error_code.value)
        self.error_code = error_code


class EnrichmentExecutor:
    """Runs a single enrichment attempt and reports the outcome as an EnrichmentResult."""

    def __init__(
        self,
        client: ResearchClient | None = None,
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
        max_call_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
    ):
        self.client = client or research_client
        self.model = model or settings.ENRICH_MODEL
        self.timeout_seconds = timeout_seconds or settings.ENRICH_CALL_TIMEOUT_SECONDS
        self.max_call_attempts = max_call_attempts or settings.ENRICH_CALL_MAX_ATTEMPTS
        self.retry_delay_seconds = (
            settings.ENRICH_CALL_RETRY_DELAY_SECONDS
            if retry_delay_seconds is None
            else retry_delay_seconds
        )

    async def execute(self, enrichment_input: EnrichmentInput, attempt_number: int) -> EnrichmentResult:
        """
        Perform one enrichment attempt.

        Args:
            enrichment_input: Job input
            attempt_number: Orchestrator-level attempt (1-based), for logging

        Returns:
            EnrichmentResult; failures carry a fallback profile
        """
        start_time = time.monotonic()
        logger.info(
            "Enrichment attempt started",
            user_id=enrichment_input.user_id,
            attempt=attempt_number,
            model=self.model,
            has_company=bool(enrichment_input.company),
            has_industry=bool(enrichment_input.industry),
            has_website=bool(enrichment_input.website),
        )

        if not settings.enrich_model_allowed(self.model):
            return self._failure(
                enrichment_input, EnrichmentErrorCode.MODEL_NOT_ALLOWED, attempt_number, start_time
            )

        if not self.client.credentials_valid():
            return self._failure(enrichment_input, EnrichmentErrorCode.AUTH, attempt_number, start_time)

        request = build_research_request(enrichment_input)

        try:
            response = await self._call_with_retry(request, enrichment_input.user_id)
        except _CallFailed as e:
            return self._failure(enrichment_input, e.error_code, attempt_number, start_time)

        outcome = parse_research_response(response.text)
        if isinstance(outcome, MalformedResponse):
            logger.warning(
                "Research response could not be parsed",
                user_id=enrichment_input.user_id,
                reason=outcome.reason,
                preview=outcome.preview,
            )
            return self._failure(enrichment_input, EnrichmentErrorCode.PARSE, attempt_number, start_time)

        candidate, fields_repaired = repair_profile_schema(outcome.data)
        if fields_repaired:
            logger.info(
                "Research response schema repaired",
                user_id=enrichment_input.user_id,
                fields_repaired=fields_repaired,
            )

        report = score_profile(candidate)
        if not report.passed:
            logger.warning(
                "Enrichment candidate rejected by quality gate",
                user_id=enrichment_input.user_id,
                quality_score=report.score,
                quality_details=report.breakdown,
            )
            return self._failure(
                enrichment_input,
                EnrichmentErrorCode.QUALITY_GATE_FAILED,
                attempt_number,
                start_time,
                quality_score=report.score,
                quality_details=report.breakdown,
            )

        try:
            profile = self._assemble_profile(enrichment_input, candidate, report, attempt_number)
        except ValidationError as e:
            logger.warning(
                "Research response does not fit the profile model",
                user_id=enrichment_input.user_id,
                error_count=e.error_count(),
                error=str(e)[:200],
            )
            return self._failure(
                enrichment_input,
                EnrichmentErrorCode.PARSE,
                attempt_number,
                start_time,
                quality_score=report.score,
                quality_details=report.breakdown,
            )

        logger.info(
            "Enrichment attempt succeeded",
            user_id=enrichment_input.user_id,
            attempt=attempt_number,
            model=response.model,
            quality_score=report.score,
            confidence=report.confidence.value,
            tokens_used=response.tokens_used,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )

        return EnrichmentResult(
            profile=profile,
            success=True,
            status=EnrichmentStatus.LIVE_RESEARCH,
            error_code=None,
            confidence=report.confidence,
            quality_score=report.score,
            quality_details=report.breakdown,
        )

    async def _call_with_retry(self, request: str, user_id: str) -> ResearchResponse:
        """Race each call against the timeout; retry transient failures with attempt * delay backoff."""
        last_error = EnrichmentErrorCode.UNKNOWN

        for call_attempt in range(1, self.max_call_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self.client.research(request, self.model), timeout=self.timeout_seconds
                )

            except TimeoutError:
                last_error = EnrichmentErrorCode.TIMEOUT
                logger.warning(
                    "Research call timed out",
                    user_id=user_id,
                    call_attempt=call_attempt,
                    timeout_seconds=self.timeout_seconds,
                )

            except ResearchClientError as e:
                error_code = _CALL_CODE_TO_ERROR.get(e.code, EnrichmentErrorCode.UNKNOWN)
                if not e.retryable:
                    logger.error(
                        "Research call failed (not retrying)",
                        user_id=user_id,
                        call_attempt=call_attempt,
                        call_error=e.code,
                        error=str(e)[:200],
                    )
                    raise _CallFailed(error_code) from e

                last_error = error_code
                logger.warning(
                    "Research call failed, retrying",
                    user_id=user_id,
                    call_attempt=call_attempt,
                    call_error=e.code,
                    error=str(e)[:200],
                )

            if call_attempt < self.max_call_attempts:
                await asyncio.sleep(call_attempt * self.retry_delay_seconds)

        logger.error(
            "Research call failed after all attempts",
            user_id=user_id,
            max_call_attempts=self.max_call_attempts,
            error_code=last_error.value,
        )
        raise _CallFailed(last_error)

    def _assemble_profile(
        self,
        enrichment_input: EnrichmentInput,
        candidate: dict,
        report: QualityReport,
        attempt_number: int,
    ) -> CompanyProfile:
        now = datetime.now(UTC)
        profile = CompanyProfile.model_validate(candidate)

        goals = profile.goals or ([enrichment_input.primary_goal] if enrichment_input.primary_goal else [])

        return profile.model_copy(
            update={
                "goals": goals,
                "custom_system_prompt": build_system_prompt(
                    enrichment_input,
                    profile.company_description,
                    profile.target_audience,
                    profile.brand_voice,
                ),
                "quality_score": report.score,
                "quality_details": report.breakdown,
                "enrichment_status": EnrichmentStatus.LIVE_RESEARCH,
                "enrichment_error_code": None,
                "last_updated": now,
                "enrichment_meta": EnrichmentMeta(
                    status=EnrichmentStatus.LIVE_RESEARCH,
                    last_updated=now,
                    attempts=attempt_number,
                    confidence=report.confidence,
                ),
            }
        )

    def _failure(
        self,
        enrichment_input: EnrichmentInput,
        error_code: EnrichmentErrorCode,
        attempt_number: int,
        start_time: float,
        *,
        quality_score: int | None = None,
        quality_details: dict[str, int] | None = None,
    ) -> EnrichmentResult:
        status = (
            EnrichmentStatus.TIMEOUT
            if error_code == EnrichmentErrorCode.TIMEOUT
            else EnrichmentStatus.FALLBACK
        )

        logger.warning(
            "Enrichment attempt failed",
            user_id=enrichment_input.user_id,
            attempt=attempt_number,
            status=status.value,
            error_code=error_code.value,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )

        return EnrichmentResult(
            profile=build_fallback_profile(enrichment_input, error_code),
            success=False,
            status=status,
            error_code=error_code,
            confidence=Confidence.LOW,
            quality_score=quality_score,
            quality_details=quality_details,
        )


enrichment_executor = EnrichmentExecutor()
