from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.jobs.enrichment_retry_job import EnrichmentRetrySweepJob
from app.models.domain.enrichment_domain import EnrichmentStatus
from app.routes import admin_enrich
from app.services.enrichment.executor import EnrichmentExecutor
from app.services.enrichment.orchestrator import EnrichmentOrchestrator, enrichment_orchestrator
from app.services.enrichment.task_runner import DetachedTaskRunner
from app.services.enrichment.triggers import initial_enrichment_meta, trigger_after_registration
from app.services.knowledge_digest import PENDING_PLACEHOLDER, get_knowledge_digest
from tests.conftest import FakeResearchClient


@pytest.mark.asyncio
async def test_registration_to_enriched_profile_across_restart(
    monkeypatch, apply_auth_override, repository, make_user, clock, research_payload
):
    client = FakeResearchClient("hang", "hang", "hang", research_payload())
    executor = EnrichmentExecutor(
        client, model="gpt-4o", timeout_seconds=0.05, max_call_attempts=3, retry_delay_seconds=0
    )
    runner = DetachedTaskRunner()
    orchestrator = EnrichmentOrchestrator(
        repository=repository, executor=executor, runner=runner, clock=clock
    )

    # Registration stores the queued stub, then triggers
    meta = initial_enrichment_meta("Acme", "SaaS", now=clock())
    user = make_user(ai_profile={"enrichmentMeta": meta.to_document()})
    repository.add_user(user)
    task = trigger_after_registration(user, orchestrator)

    pending = await get_knowledge_digest("user-1", repository=repository)
    assert PENDING_PLACEHOLDER in pending.digest

    first = await task
    assert first.status == EnrichmentStatus.TIMEOUT
    assert first.next_retry_at == clock() + timedelta(minutes=2)
    assert runner.pending_count == 1

    # Process restart: the in-memory retry timer is lost
    await runner.shutdown()
    assert runner.pending_count == 0

    clock.advance(timedelta(minutes=3))
    metrics = await EnrichmentRetrySweepJob(orchestrator=orchestrator).run_once()
    assert metrics["retries_started"] == 1

    digest = await get_knowledge_digest("user-1", mode="power", repository=repository)
    assert digest.status_label == "Up to date"
    assert digest.has_profile_data is True
    assert len(digest.digest) <= 2000

    monkeypatch.setattr(enrichment_orchestrator, "repository", repository)
    app = FastAPI()
    apply_auth_override(app)
    app.include_router(admin_enrich.router)
    http = TestClient(app)

    status_response = http.get("/admin/users/user-1/enrichment-status")
    assert status_response.status_code == 200
    body = status_response.json()
    assert body["enrichmentStatus"] == "live_research"
    assert body["profileEnriched"] is True
    assert body["enrichmentMeta"]["attempts"] == 2
    assert body["enrichmentMeta"]["nextRetryAt"] is None

    conflict = http.post("/admin/users/user-1/enrich")
    assert conflict.status_code == 409
    assert len(client.calls) == 4
