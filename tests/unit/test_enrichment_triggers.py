"""
Tests for enrichment entry points (registration auto-trigger and admin re-enrichment).
"""

from datetime import timedelta

import pytest

from app.models.domain.enrichment_domain import EnrichmentStatus
from app.services.enrichment.triggers import (
    EnrichmentConflictError,
    EnrichmentInputError,
    EnrichmentUserNotFoundError,
    force_re_enrich,
    initial_enrichment_meta,
    trigger_after_registration,
)
from tests.conftest import FakeResearchClient


class TestInitialEnrichmentMeta:
    def test_queued_stub_when_company_and_industry_present(self, clock):
        meta = initial_enrichment_meta("Acme", "SaaS", now=clock())

        assert meta.status == EnrichmentStatus.QUEUED
        assert meta.attempts == 0
        assert meta.last_updated == clock()
        assert meta.next_retry_at is None

    @pytest.mark.parametrize("company,industry", [("", "SaaS"), ("Acme", "  "), (None, None)])
    def test_no_stub_without_company_data(self, company, industry):
        assert initial_enrichment_meta(company, industry) is None


class TestTriggerAfterRegistration:
    @pytest.mark.asyncio
    async def test_schedules_job_and_returns_immediately(
        self, repository, build_orchestrator, make_user, meta_doc, research_payload, task_runner_fake
    ):
        user = make_user(ai_profile={"enrichmentMeta": meta_doc(status="queued")})
        repository.add_user(user)
        orchestrator = build_orchestrator(FakeResearchClient(research_payload()))

        trigger_after_registration(user, orchestrator)

        assert [name for name, _ in task_runner_fake.spawned] == ["enrichment-user-1"]
        assert repository.users["user-1"].enrichment_meta().status == EnrichmentStatus.QUEUED

        results = await task_runner_fake.drain()

        assert results[0].status == EnrichmentStatus.LIVE_RESEARCH

    def test_no_trigger_without_company_data(self, build_orchestrator, make_user, task_runner_fake):
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        assert trigger_after_registration(make_user(industry=""), orchestrator) is None
        assert task_runner_fake.spawned == []


class TestForceReEnrich:
    @pytest.mark.asyncio
    async def test_unknown_user(self, build_orchestrator):
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        with pytest.raises(EnrichmentUserNotFoundError):
            await force_re_enrich("ghost", orchestrator=orchestrator)

    @pytest.mark.asyncio
    async def test_enriched_user_needs_force(
        self, repository, build_orchestrator, make_user, meta_doc, task_runner_fake
    ):
        repository.add_user(
            make_user(
                profile_enriched=True,
                ai_profile={"enrichmentMeta": meta_doc(status="live_research", attempts=1)},
            )
        )
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        with pytest.raises(EnrichmentConflictError):
            await force_re_enrich("user-1", orchestrator=orchestrator)
        assert task_runner_fake.spawned == []

    @pytest.mark.asyncio
    async def test_user_without_company_data(self, repository, build_orchestrator, make_user):
        repository.add_user(make_user(company="", industry=""))
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        with pytest.raises(EnrichmentInputError):
            await force_re_enrich("user-1", orchestrator=orchestrator)

    @pytest.mark.asyncio
    async def test_force_resets_exhausted_user_and_reenriches(
        self, repository, build_orchestrator, make_user, meta_doc, research_payload, task_runner_fake
    ):
        repository.add_user(
            make_user(
                ai_profile={
                    "enrichmentStatus": "fallback",
                    "enrichmentMeta": meta_doc(status="timeout", error_code="timeout", attempts=3),
                }
            )
        )
        orchestrator = build_orchestrator(FakeResearchClient(research_payload()))

        meta = await force_re_enrich("user-1", force=True, orchestrator=orchestrator)

        assert meta.status == EnrichmentStatus.QUEUED
        assert meta.attempts == 0
        stored = repository.users["user-1"].enrichment_meta()
        assert stored.status == EnrichmentStatus.QUEUED
        assert stored.attempts == 0

        results = await task_runner_fake.drain()

        assert results[0].status == EnrichmentStatus.LIVE_RESEARCH
        assert results[0].attempts == 1
        assert repository.users["user-1"].profile_enriched is True

    @pytest.mark.asyncio
    async def test_force_refused_while_in_progress(
        self, repository, build_orchestrator, make_user, meta_doc, clock, task_runner_fake
    ):
        repository.add_user(
            make_user(
                ai_profile={
                    "enrichmentMeta": meta_doc(
                        status="in_progress", attempts=1, last_updated=clock() - timedelta(seconds=5)
                    )
                }
            )
        )
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        with pytest.raises(EnrichmentConflictError):
            await force_re_enrich("user-1", force=True, orchestrator=orchestrator)
        assert task_runner_fake.spawned == []

    @pytest.mark.asyncio
    async def test_without_force_in_progress_conflicts(
        self, repository, build_orchestrator, make_user, meta_doc
    ):
        repository.add_user(
            make_user(ai_profile={"enrichmentMeta": meta_doc(status="in_progress", attempts=1)})
        )
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        with pytest.raises(EnrichmentConflictError):
            await force_re_enrich("user-1", orchestrator=orchestrator)

    @pytest.mark.asyncio
    async def test_not_yet_enriched_user_starts_without_force(
        self, repository, build_orchestrator, make_user, meta_doc, task_runner_fake
    ):
        repository.add_user(
            make_user(
                ai_profile={"enrichmentMeta": meta_doc(status="fallback", error_code="parse", attempts=1)}
            )
        )
        orchestrator = build_orchestrator(FakeResearchClient("{}"))

        meta = await force_re_enrich("user-1", orchestrator=orchestrator)

        assert meta.attempts == 1
        assert len(task_runner_fake.spawned) == 1
