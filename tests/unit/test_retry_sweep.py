"""
Tests for the durable enrichment retry sweep.
"""

from datetime import timedelta

import pytest

from app.jobs.enrichment_retry_job import EnrichmentRetrySweepJob
from app.models.domain.enrichment_domain import EnrichmentStatus
from tests.conftest import FakeResearchClient


@pytest.mark.asyncio
async def test_sweep_runs_due_retries(
    repository, build_orchestrator, make_user, meta_doc, clock, research_payload
):
    due = make_user(
        "user-due",
        ai_profile={
            "enrichmentMeta": meta_doc(
                status="timeout",
                error_code="timeout",
                attempts=1,
                next_retry_at=clock() - timedelta(minutes=1),
            )
        },
    )
    not_yet = make_user(
        "user-later",
        ai_profile={
            "enrichmentMeta": meta_doc(
                status="fallback",
                error_code="parse",
                attempts=1,
                next_retry_at=clock() + timedelta(minutes=5),
            )
        },
    )
    repository.add_user(due)
    repository.add_user(not_yet)
    client = FakeResearchClient(research_payload())
    job = EnrichmentRetrySweepJob(orchestrator=build_orchestrator(client))

    metrics = await job.run_once()

    assert metrics["due_found"] == 1
    assert metrics["retries_started"] == 1
    assert metrics["processing_errors"] == 0
    assert repository.users["user-due"].enrichment_meta().status == EnrichmentStatus.LIVE_RESEARCH
    assert repository.users["user-due"].enrichment_meta().attempts == 2
    assert repository.users["user-later"].enrichment_meta().status == EnrichmentStatus.FALLBACK
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_sweep_releases_stale_in_progress(
    repository, build_orchestrator, make_user, meta_doc, clock, research_payload
):
    stale = make_user(
        "user-stale",
        ai_profile={
            "enrichmentMeta": meta_doc(
                status="in_progress", attempts=1, last_updated=clock() - timedelta(minutes=30)
            )
        },
    )
    fresh = make_user(
        "user-fresh",
        ai_profile={
            "enrichmentMeta": meta_doc(
                status="in_progress", attempts=1, last_updated=clock() - timedelta(minutes=1)
            )
        },
    )
    repository.add_user(stale)
    repository.add_user(fresh)
    client = FakeResearchClient(research_payload())
    job = EnrichmentRetrySweepJob(orchestrator=build_orchestrator(client))

    metrics = await job.run_once()

    assert metrics["stale_found"] == 1
    assert metrics["stale_released"] == 1
    released = repository.users["user-stale"].enrichment_meta()
    assert released.status == EnrichmentStatus.FAILED
    assert released.error_code == "unknown"
    assert released.next_retry_at == clock() + timedelta(minutes=2)
    assert repository.users["user-fresh"].enrichment_meta().status == EnrichmentStatus.IN_PROGRESS
    assert client.calls == []


@pytest.mark.asyncio
async def test_sweep_skips_exhausted_jobs(
    repository, build_orchestrator, make_user, meta_doc, clock, research_payload
):
    repository.add_user(
        make_user(
            ai_profile={
                "enrichmentMeta": meta_doc(
                    status="timeout",
                    error_code="timeout",
                    attempts=3,
                    next_retry_at=clock() - timedelta(minutes=1),
                )
            }
        )
    )
    client = FakeResearchClient(research_payload())
    job = EnrichmentRetrySweepJob(orchestrator=build_orchestrator(client))

    metrics = await job.run_once()

    assert metrics["retries_skipped"] == 1
    assert client.calls == []


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(build_orchestrator, research_payload):
    job = EnrichmentRetrySweepJob(orchestrator=build_orchestrator(FakeResearchClient("{}")))
    job.is_running = True

    assert await job.run_once() == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_repository_failure_is_reported(build_orchestrator, repository):
    async def broken(*args, **kwargs):
        raise RuntimeError("db down")

    repository.list_stale_in_progress = broken
    job = EnrichmentRetrySweepJob(orchestrator=build_orchestrator(FakeResearchClient("{}")))

    metrics = await job.run_once()

    assert metrics["job_error"] == "db down"
    assert job.is_running is False
