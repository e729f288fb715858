"""
Persistence for enrichment state.

Enrichment state lives on the ``users`` row: the ``ai_profile`` JSONB document
holds the profile and its ``enrichmentMeta``; ``profile_enriched`` and
``last_enrichment_date`` mirror the outcome for cheap reads.

Columns used:
    id, email, first_name, last_name, company, industry, job_role, website,
    phone, language, primary_goal, profile_enriched, ai_profile (jsonb),
    last_enrichment_date (timestamptz)

State transitions that race (claiming an attempt, storing its outcome, forced
reset) are single conditional UPDATEs; the row count says who won.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.enrichment_domain import CompanyProfile, EnrichmentMeta
from app.models.domain.user_domain import UserRecord

logger = get_logger(__name__)

_ATTEMPTS_SQL = "COALESCE((ai_profile -> 'enrichmentMeta' ->> 'attempts')::int, 0)"
_STATUS_SQL = "COALESCE(ai_profile -> 'enrichmentMeta' ->> 'status', '')"


class EnrichmentRepository:
    """Reads users and applies enrichment state transitions."""

    USER_SELECT_COLUMNS = """
        id, email, first_name, last_name, company, industry, job_role,
        website, phone, language, primary_goal, profile_enriched,
        ai_profile, last_enrichment_date
    """

    @staticmethod
    def _row_to_user(row: dict[str, Any] | None) -> UserRecord | None:
        if not row:
            return None
        data = dict(row)
        data["user_id"] = str(data.pop("id"))
        data["profile_enriched"] = bool(data.get("profile_enriched"))
        return UserRecord.model_validate(data)

    @with_db_retry(max_retries=2)
    async def get_user(self, user_id: str) -> UserRecord | None:
        query = f"SELECT {self.USER_SELECT_COLUMNS} FROM users WHERE id = %s"
        return self._row_to_user(await fetch_one(query, (user_id,)))

    @with_db_retry(max_retries=2)
    async def claim_attempt(
        self, user_id: str, expected_attempts: int, meta: EnrichmentMeta
    ) -> bool:
        """
        Move the job to in_progress with ``meta`` if nobody else did first.

        Applies only while the persisted attempts still equal
        ``expected_attempts`` and the status is not in_progress.

        Returns:
            True if this caller owns the attempt
        """
        query = f"""
            UPDATE users
            SET ai_profile = jsonb_set(
                    COALESCE(ai_profile, '{{}}'::jsonb), '{{enrichmentMeta}}', %s
                ),
                profile_enriched = false
            WHERE id = %s
              AND {_ATTEMPTS_SQL} = %s
              AND {_STATUS_SQL} <> 'in_progress'
        """

        rowcount = await execute_query(
            query, (Jsonb(meta.to_document()), user_id, expected_attempts)
        )
        claimed = rowcount == 1

        if not claimed:
            logger.info(
                "Enrichment attempt claim lost",
                user_id=user_id,
                expected_attempts=expected_attempts,
            )
        return claimed

    @with_db_retry(max_retries=2)
    async def save_profile(
        self,
        user_id: str,
        expected_attempts: int,
        profile: CompanyProfile,
        *,
        enriched: bool,
        now: datetime,
    ) -> bool:
        """
        Replace the whole ai_profile document with ``profile`` (meta embedded).

        Only the owner of the running attempt may write its outcome: the row
        must still be in_progress with ``expected_attempts``.
        ``last_enrichment_date`` only moves on success.

        Returns:
            True if the outcome was stored
        """
        query = f"""
            UPDATE users
            SET ai_profile = %s,
                profile_enriched = %s,
                last_enrichment_date = CASE WHEN %s THEN %s ELSE last_enrichment_date END
            WHERE id = %s
              AND {_STATUS_SQL} = 'in_progress'
              AND {_ATTEMPTS_SQL} = %s
        """

        rowcount = await execute_query(
            query,
            (Jsonb(profile.to_document()), enriched, enriched, now, user_id, expected_attempts),
        )
        if rowcount != 1:
            logger.warning(
                "Enrichment outcome discarded, attempt no longer owned",
                user_id=user_id,
                expected_attempts=expected_attempts,
            )
        return rowcount == 1

    @with_db_retry(max_retries=2)
    async def reset_for_reenrich(self, user_id: str, meta: EnrichmentMeta) -> bool:
        """
        Forced reset to a fresh queued stub. Refused while an attempt is running.

        Returns:
            True if the reset was applied
        """
        query = f"""
            UPDATE users
            SET ai_profile = jsonb_set(
                    COALESCE(ai_profile, '{{}}'::jsonb), '{{enrichmentMeta}}', %s
                ),
                profile_enriched = false
            WHERE id = %s
              AND {_STATUS_SQL} <> 'in_progress'
        """

        rowcount = await execute_query(query, (Jsonb(meta.to_document()), user_id))
        return rowcount == 1

    @with_db_retry(max_retries=2)
    async def list_due_retries(self, now: datetime, limit: int) -> list[UserRecord]:
        """Users whose persisted nextRetryAt has passed."""
        query = f"""
            SELECT {self.USER_SELECT_COLUMNS}
            FROM users
            WHERE ai_profile -> 'enrichmentMeta' ->> 'nextRetryAt' IS NOT NULL
              AND (ai_profile -> 'enrichmentMeta' ->> 'nextRetryAt')::timestamptz <= %s
              AND {_STATUS_SQL} <> 'in_progress'
            ORDER BY (ai_profile -> 'enrichmentMeta' ->> 'nextRetryAt')::timestamptz
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [self._row_to_user(row) for row in rows]

    @with_db_retry(max_retries=2)
    async def list_stale_in_progress(self, older_than: datetime, limit: int) -> list[UserRecord]:
        """Users stuck in_progress since before ``older_than`` (e.g. process died mid-attempt)."""
        query = f"""
            SELECT {self.USER_SELECT_COLUMNS}
            FROM users
            WHERE {_STATUS_SQL} = 'in_progress'
              AND (ai_profile -> 'enrichmentMeta' ->> 'lastUpdated')::timestamptz < %s
            ORDER BY (ai_profile -> 'enrichmentMeta' ->> 'lastUpdated')::timestamptz
            LIMIT %s
        """
        rows = await fetch_all(query, (older_than, limit))
        return [self._row_to_user(row) for row in rows]


# Shared instance for application use
enrichment_repository = EnrichmentRepository()
