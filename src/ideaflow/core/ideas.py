"""Idea submission and the forward PRD/prototype stage moves."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from ideaflow.auth.permissions import Actor, can_access, can_submit
from ideaflow.core.boundary import service_boundary
from ideaflow.models.idea import Idea
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)

# (field, min length, max length or None), applied after trimming
_FIELD_BOUNDS = (
    ("title", 1, 200),
    ("problem", 50, None),
    ("solution", 50, None),
    ("impact", 30, None),
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_submission(fields: dict[str, str]) -> str | None:
    """Return the first validation message for a submission, or None."""
    for name, low, high in _FIELD_BOUNDS:
        value = fields.get(name, "")
        label = name.capitalize()
        if len(value) < low:
            if low == 1:
                return f"{label} is required"
            return f"{label} must be at least {low} characters"
        if high is not None and len(value) > high:
            return f"{label} must be at most {high} characters"
    return None


class IdeaService:
    """Submit ideas and drive them along approved -> prd_development -> prototype_complete."""

    def __init__(
        self, store: StorageBackend, *, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self._store = store
        self._clock = clock

    @service_boundary("submit idea")
    async def submit(
        self,
        actor: Actor,
        *,
        title: str,
        problem: str,
        solution: str,
        impact: str,
    ) -> ServiceResult[Idea]:
        if not can_submit(actor.role):
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, "Not allowed to submit ideas")

        fields = {
            "title": (title or "").strip(),
            "problem": (problem or "").strip(),
            "solution": (solution or "").strip(),
            "impact": (impact or "").strip(),
        }
        message = validate_submission(fields)
        if message:
            return ServiceResult.failure(ErrorKind.VALIDATION_ERROR, message)

        now = self._clock().isoformat()
        idea = Idea(
            user_id=actor.user_id,
            status="submitted",
            created_at=now,
            updated_at=now,
            **fields,
        )
        await self._store.insert_idea(idea.to_storage())
        logger.info("Idea %s submitted by %s", idea.id, actor.user_id)
        return ServiceResult.success(idea)

    @service_boundary("get idea")
    async def get(self, idea_id: str, actor: Actor | None = None) -> ServiceResult[Idea]:
        """Fetch one idea. With an actor, only its owner or an admin may read it."""
        data = await self._store.get_idea(idea_id)
        if data is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Idea not found")
        idea = Idea(**data)
        if actor is not None and not can_access(actor, idea.user_id):
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, "Not allowed to view this idea")
        return ServiceResult.success(idea)

    @service_boundary("list ideas for user")
    async def list_for_user(self, user_id: str) -> ServiceResult[list[Idea]]:
        """All of a user's ideas, newest first, rejected ones included."""
        rows = await self._store.list_ideas(user_id=user_id, sort="newest")
        return ServiceResult.success([Idea(**row) for row in rows])

    @service_boundary("start PRD")
    async def start_prd(self, idea_id: str) -> ServiceResult[Idea]:
        """approved -> prd_development, once a PRD is started."""
        return await self._advance(idea_id, "approved", "prd_development")

    @service_boundary("complete prototype")
    async def complete_prototype(self, idea_id: str) -> ServiceResult[Idea]:
        """prd_development -> prototype_complete, once a prototype version is ready.

        An idea already at prototype_complete is left alone and returned, so
        later versions of the same lineage succeed too.
        """
        return await self._advance(
            idea_id, "prd_development", "prototype_complete", already_there_ok=True
        )

    async def _advance(
        self,
        idea_id: str,
        from_status: str,
        to_status: str,
        *,
        already_there_ok: bool = False,
    ) -> ServiceResult[Idea]:
        now = self._clock().isoformat()
        row = await self._store.transition_idea(
            idea_id,
            from_statuses=[from_status],
            updates={"status": to_status, "status_updated_at": now, "updated_at": now},
        )
        if row is not None:
            logger.info("Idea %s moved %s -> %s", idea_id, from_status, to_status)
            return ServiceResult.success(Idea(**row))

        existing = await self._store.get_idea(idea_id)
        if existing is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Idea not found")
        if already_there_ok and existing["status"] == to_status:
            return ServiceResult.success(Idea(**existing))

        logger.warning(
            "Idea %s cannot move to %s from %s", idea_id, to_status, existing["status"]
        )
        return ServiceResult.failure(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot move idea from {existing['status']} to {to_status}",
        )
