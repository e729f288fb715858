"""
Retry policy for enrichment jobs.

An enrichment job gets at most MAX_ATTEMPTS attempts. A failed attempt is
retried after RETRY_BACKOFF[attempts - 1] unless the error code is known to be
futile to retry.
"""

from datetime import datetime, timedelta

from app.models.domain.enrichment_domain import (
    NON_RETRYABLE_ERROR_CODES,
    EnrichmentErrorCode,
    EnrichmentMeta,
    EnrichmentStatus,
)

MAX_ATTEMPTS = 3

RETRY_BACKOFF: tuple[timedelta, ...] = (
    timedelta(minutes=2),
    timedelta(minutes=10),
    timedelta(minutes=60),
)


def is_retryable(error_code: EnrichmentErrorCode | str | None) -> bool:
    """Non-retryable: quota, auth, model_not_allowed. A missing code is retryable."""
    if error_code is None:
        return True
    try:
        return EnrichmentErrorCode(error_code) not in NON_RETRYABLE_ERROR_CODES
    except ValueError:
        return True


def backoff_for(attempts: int) -> timedelta:
    """Delay before the retry that follows attempt number ``attempts``."""
    index = min(max(attempts, 1), len(RETRY_BACKOFF)) - 1
    return RETRY_BACKOFF[index]


def compute_next_retry_at(
    attempts: int,
    success: bool,
    error_code: EnrichmentErrorCode | None,
    now: datetime,
) -> datetime | None:
    """
    Decide when the next attempt is due.

    Returns None when the attempt succeeded, the attempt budget is spent, or
    the error is non-retryable.
    """
    if success or attempts >= MAX_ATTEMPTS or not is_retryable(error_code):
        return None
    return now + backoff_for(attempts)


def skip_reason(meta: EnrichmentMeta | None) -> str | None:
    """
    Why a new attempt must not start for this state, or None when it may.

    A missing meta (never enriched, or a corrupt document) may start.
    """
    if meta is None:
        return None
    if meta.attempts >= MAX_ATTEMPTS:
        return "max_attempts_reached"
    if not is_retryable(meta.error_code):
        return "non_retryable_error"
    if meta.status == EnrichmentStatus.IN_PROGRESS:
        return "already_in_progress"
    if meta.status == EnrichmentStatus.LIVE_RESEARCH:
        return "already_enriched"
    return None


def should_start_attempt(meta: EnrichmentMeta | None) -> bool:
    return skip_reason(meta) is None
