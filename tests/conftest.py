import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from app.auth.verify import admin_dependency, auth_dependency
from app.models.domain.enrichment_domain import CompanyProfile, EnrichmentMeta
from app.models.domain.user_domain import UserRecord
from app.services.enrichment.executor import EnrichmentExecutor
from app.services.enrichment.orchestrator import EnrichmentOrchestrator
from app.services.research_client import ResearchResponse

FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "admin-1", "app_metadata": {"role": "admin"}}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override
        app.dependency_overrides[admin_dependency] = auth_override

    return _apply


class InMemoryEnrichmentRepository:
    """Same contract (including the conditional writes) as EnrichmentRepository."""

    def __init__(self):
        self.users: dict[str, UserRecord] = {}
        self.writes = 0

    def add_user(self, user: UserRecord) -> None:
        self.users[user.user_id] = user.model_copy(deep=True)

    def _meta_doc(self, user_id: str) -> dict[str, Any]:
        return (self.users[user_id].ai_profile or {}).get("enrichmentMeta") or {}

    async def get_user(self, user_id: str) -> UserRecord | None:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def claim_attempt(self, user_id: str, expected_attempts: int, meta: EnrichmentMeta) -> bool:
        if user_id not in self.users:
            return False
        current = self._meta_doc(user_id)
        if current.get("attempts", 0) != expected_attempts or current.get("status") == "in_progress":
            return False
        user = self.users[user_id]
        ai_profile = dict(user.ai_profile or {})
        ai_profile["enrichmentMeta"] = meta.to_document()
        self.users[user_id] = user.model_copy(update={"ai_profile": ai_profile, "profile_enriched": False})
        self.writes += 1
        return True

    async def save_profile(
        self,
        user_id: str,
        expected_attempts: int,
        profile: CompanyProfile,
        *,
        enriched: bool,
        now: datetime,
    ) -> bool:
        if user_id not in self.users:
            return False
        current = self._meta_doc(user_id)
        if current.get("status") != "in_progress" or current.get("attempts", 0) != expected_attempts:
            return False
        user = self.users[user_id]
        update: dict[str, Any] = {
            # JSON round trip, as JSONB storage would do
            "ai_profile": json.loads(json.dumps(profile.to_document())),
            "profile_enriched": enriched,
        }
        if enriched:
            update["last_enrichment_date"] = now
        self.users[user_id] = user.model_copy(update=update)
        self.writes += 1
        return True

    async def reset_for_reenrich(self, user_id: str, meta: EnrichmentMeta) -> bool:
        if user_id not in self.users or self._meta_doc(user_id).get("status") == "in_progress":
            return False
        user = self.users[user_id]
        ai_profile = dict(user.ai_profile or {})
        ai_profile["enrichmentMeta"] = meta.to_document()
        self.users[user_id] = user.model_copy(update={"ai_profile": ai_profile, "profile_enriched": False})
        self.writes += 1
        return True

    async def list_due_retries(self, now: datetime, limit: int) -> list[UserRecord]:
        due = []
        for user in self.users.values():
            meta = user.enrichment_meta()
            if meta and meta.next_retry_at and meta.next_retry_at <= now and meta.status != "in_progress":
                due.append(user.model_copy(deep=True))
        return due[:limit]

    async def list_stale_in_progress(self, older_than: datetime, limit: int) -> list[UserRecord]:
        stale = []
        for user in self.users.values():
            meta = user.enrichment_meta()
            if meta and meta.status == "in_progress" and meta.last_updated and meta.last_updated < older_than:
                stale.append(user.model_copy(deep=True))
        return stale[:limit]


class FakeResearchClient:
    """
    Scripted research client.

    Each queued item is a response text, an exception to raise, or the string
    "hang" (sleeps past any test timeout). The last item repeats.
    """

    def __init__(self, *items: Any, valid_credentials: bool = True):
        self.items = list(items)
        self.valid_credentials = valid_credentials
        self.calls: list[tuple[str, str]] = []

    def credentials_valid(self) -> bool:
        return self.valid_credentials

    async def research(self, request: str, model: str) -> ResearchResponse:
        self.calls.append((request, model))
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if item == "hang":
            await asyncio.sleep(10)
        if isinstance(item, Exception):
            raise item
        return ResearchResponse(text=item, model=model, tokens_used=1200)


class RecordingTaskRunner:
    """Task runner that records work instead of scheduling it; tests drive it explicitly."""

    def __init__(self):
        self.spawned: list[tuple[str | None, Any]] = []
        self.deferred: list[tuple[float, Any, str | None]] = []

    @property
    def pending_count(self) -> int:
        return len(self.spawned) + len(self.deferred)

    def spawn(self, coro, *, name: str | None = None):
        self.spawned.append((name, coro))
        return None

    def spawn_later(self, delay_seconds: float, factory, *, name: str | None = None):
        self.deferred.append((delay_seconds, factory, name))
        return None

    async def drain(self) -> list[Any]:
        results = []
        while self.spawned:
            _, coro = self.spawned.pop(0)
            results.append(await coro)
        return results

    async def fire_deferred(self) -> list[Any]:
        """Run the retry timers pending right now as if their delay had elapsed."""
        due, self.deferred = self.deferred, []
        return [await factory() for _, factory, _ in due]

    def close(self) -> None:
        for _, coro in self.spawned:
            coro.close()
        self.spawned.clear()
        self.deferred.clear()

    async def shutdown(self) -> None:
        self.close()


def _long_text(prefix: str, length: int) -> str:
    text = prefix
    while len(text) < length:
        text += " Focused on measurable outcomes for mid-market customers."
    return text[:length]


@pytest.fixture
def research_payload():
    """Factory for research output JSON that passes the quality gate (score 9, high confidence)."""

    def _build(**overrides: Any) -> str:
        payload: dict[str, Any] = {
            "companyDescription": _long_text("Acme builds workflow software for SaaS teams.", 400),
            "foundedYear": 2012,
            "ceoName": "Jane Doe",
            "products": [f"Product {i}" for i in range(1, 7)],
            "services": ["Onboarding", "Integration", "Support"],
            "targetAudience": _long_text("Operations leaders at B2B SaaS companies.", 150),
            "targetAudienceSegments": ["Mid-market SaaS", "Enterprise IT", "Agencies"],
            "competitors": ["Globex", "Initech", "Umbrella", "Hooli"],
            "uniqueSellingPoints": [f"USP {i}" for i in range(1, 7)],
            "brandVoice": "Confident and practical",
            "callAngles": [f"Angle {i}" for i in range(1, 6)],
            "objectionHandling": [
                {"objection": f"Objection {i}", "response": f"Response {i}"} for i in range(1, 6)
            ],
            "bestCallTimes": "Tue-Thu 10-12",
            "effectiveKeywords": ["automation", "workflow"],
            "marketPosition": "Challenger",
        }
        payload.update(overrides)
        return json.dumps({k: v for k, v in payload.items() if v is not None})

    return _build


@pytest.fixture
def make_user():
    def _make(user_id: str = "user-1", **overrides: Any) -> UserRecord:
        data: dict[str, Any] = {
            "user_id": user_id,
            "email": "jane@acme.test",
            "first_name": "Jane",
            "last_name": "Doe",
            "company": "Acme",
            "industry": "SaaS",
            "job_role": "CEO",
            "website": "acme.test",
            "language": "en",
            "primary_goal": "lead_generation",
        }
        data.update(overrides)
        return UserRecord(**data)

    return _make


@pytest.fixture
def meta_doc():
    """camelCase enrichmentMeta document as stored in ai_profile."""

    def _build(**fields: Any) -> dict[str, Any]:
        return EnrichmentMeta(**fields).to_document()

    return _build


@pytest.fixture
def repository():
    return InMemoryEnrichmentRepository()


@pytest.fixture
def task_runner_fake():
    runner = RecordingTaskRunner()
    yield runner
    runner.close()


@pytest.fixture
def clock():
    """Mutable clock: set clock.now to move time."""

    class _Clock:
        now = FIXED_NOW

        def __call__(self) -> datetime:
            return self.now

        def advance(self, delta: timedelta) -> None:
            self.now = self.now + delta

    return _Clock()


@pytest.fixture
def build_orchestrator(repository, task_runner_fake, clock):
    def _build(client: FakeResearchClient, **executor_kwargs: Any) -> EnrichmentOrchestrator:
        executor_kwargs.setdefault("model", "gpt-4o")
        executor_kwargs.setdefault("timeout_seconds", 0.05)
        executor_kwargs.setdefault("max_call_attempts", 3)
        executor_kwargs.setdefault("retry_delay_seconds", 0)
        executor = EnrichmentExecutor(client, **executor_kwargs)
        return EnrichmentOrchestrator(
            repository=repository, executor=executor, runner=task_runner_fake, clock=clock
        )

    return _build
