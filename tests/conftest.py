"""Shared test fixtures for ideaflow."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path

import pytest

from ideaflow.ai.base import (
    GenerationRequest,
    GenerationService,
    GenerationServiceError,
    PollResponse,
    SubmitResponse,
)
from ideaflow.auth.permissions import Actor
from ideaflow.config import Config
from ideaflow.events.bus import EventBus
from ideaflow.models.idea import Idea
from ideaflow.storage.sqlite_store import SQLiteStore

PROBLEM = "Reviewers lose track of which ideas are waiting on them for feedback."
SOLUTION = "A shared pipeline board that groups every idea by its current review stage."
IMPACT = "Fewer stalled ideas and faster review turnaround."

PREVIEW_CODE = {"src/App.tsx": "export default function App() { return null }"}


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class FakeGenerationService(GenerationService):
    """Scripted generation backend.

    Every handle walks through ``plan`` one poll at a time and then repeats
    its last entry. "error" raises a transient GenerationServiceError.
    """

    def __init__(self, plan: list[str] | None = None, submit_status: str = "generating") -> None:
        self.plan = plan or ["generating", "ready"]
        self.submit_status = submit_status
        self.submit_error: Exception | None = None
        self.requests: list[GenerationRequest] = []
        self.polls: dict[str, int] = defaultdict(int)

    async def submit(self, request: GenerationRequest) -> SubmitResponse:
        if self.submit_error is not None:
            raise self.submit_error
        self.requests.append(request)
        return SubmitResponse(handle_id=str(uuid.uuid4()), status=self.submit_status)

    async def poll(self, handle_id: str) -> PollResponse:
        step = self.polls[handle_id]
        self.polls[handle_id] += 1
        status = self.plan[min(step, len(self.plan) - 1)]
        if status == "error":
            raise GenerationServiceError("unavailable")
        if status == "ready":
            return PollResponse(
                status="ready", url=f"https://preview.test/{handle_id}", code=PREVIEW_CODE
            )
        return PollResponse(status=status)


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def store(tmp_db: Path, bus: EventBus) -> SQLiteStore:
    s = SQLiteStore(tmp_db, event_bus=bus)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(home_path=tmp_path, poll_interval_seconds=0.0, poll_max_attempts=5)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role="admin")


@pytest.fixture
def user() -> Actor:
    return Actor(user_id="user-1", role="user")


@pytest.fixture
def ai() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def make_idea(store: SQLiteStore):
    """Insert an idea directly, bypassing submission validation."""

    async def _make(
        *,
        user_id: str = "user-1",
        title: str = "Pipeline board",
        status: str = "submitted",
        created_at: str | None = None,
        status_updated_at: str | None = None,
    ) -> Idea:
        created = created_at or now_iso()
        idea = Idea(
            user_id=user_id,
            title=title,
            problem=PROBLEM,
            solution=SOLUTION,
            impact=IMPACT,
            status=status,
            created_at=created,
            updated_at=created,
            status_updated_at=status_updated_at,
        )
        await store.insert_idea(idea.to_storage())
        return idea

    return _make
