"""Idea Transition Service.

Admin review of submitted ideas. Each transition is a single conditional
write against the store: the status check and the update happen in one
statement, so two reviewers racing on the same idea cannot both win.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from ideaflow.auth.permissions import Actor
from ideaflow.config import Config
from ideaflow.core.boundary import service_boundary
from ideaflow.models.idea import Idea
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)

ALREADY_REVIEWED_MESSAGE = "This idea has already been reviewed"
NOT_FOUND_MESSAGE = "Idea not found"
UNAUTHORIZED_MESSAGE = "Only admins can review ideas"

_HTML_ESCAPES = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
}


def escape_feedback(text: str) -> str:
    """Escape the characters that matter when feedback is rendered as HTML."""
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IdeaTransitionService:
    """Approve and reject submitted ideas."""

    def __init__(
        self,
        store: StorageBackend,
        config: Config | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or Config()
        self._clock = clock

    @service_boundary("approve idea")
    async def approve(self, idea_id: str, actor: Actor) -> ServiceResult[Idea]:
        """Move a submitted idea to approved.

        Args:
            idea_id: Idea to approve
            actor: Reviewer; must be an admin

        Returns:
            ServiceResult with the updated Idea, or ALREADY_REVIEWED when
            the idea is no longer submitted.
        """
        if not actor.is_admin:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, UNAUTHORIZED_MESSAGE)

        now = self._clock().isoformat()
        row = await self._store.transition_idea(
            idea_id,
            from_statuses=["submitted"],
            updates={"status": "approved", "status_updated_at": now, "updated_at": now},
        )
        if row is None:
            return await self._lost_guard(idea_id, actor)

        logger.info("Idea %s approved by %s", idea_id, actor.user_id)
        return ServiceResult.success(Idea(**row))

    @service_boundary("reject idea")
    async def reject(self, idea_id: str, feedback: str, actor: Actor) -> ServiceResult[Idea]:
        """Move a submitted idea to rejected, recording escaped feedback."""
        if not actor.is_admin:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, UNAUTHORIZED_MESSAGE)

        trimmed = (feedback or "").strip()
        low = self._config.feedback_min_length
        high = self._config.feedback_max_length
        if len(trimmed) < low:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, f"Feedback must be at least {low} characters"
            )
        if len(trimmed) > high:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, f"Feedback must be at most {high} characters"
            )

        now = self._clock().isoformat()
        row = await self._store.transition_idea(
            idea_id,
            from_statuses=["submitted"],
            updates={
                "status": "rejected",
                "rejection_feedback": escape_feedback(trimmed),
                "rejected_by": actor.user_id,
                "rejected_at": now,
                "status_updated_at": now,
                "updated_at": now,
            },
        )
        if row is None:
            return await self._lost_guard(idea_id, actor)

        logger.info("Idea %s rejected by %s", idea_id, actor.user_id)
        return ServiceResult.success(Idea(**row))

    async def _lost_guard(self, idea_id: str, actor: Actor) -> ServiceResult:
        # Only consulted after the guarded write matched nothing
        existing = await self._store.get_idea(idea_id)
        if existing is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)
        logger.warning(
            "Review of idea %s by %s lost the guard (status is %s)",
            idea_id,
            actor.user_id,
            existing["status"],
        )
        return ServiceResult.failure(ErrorKind.ALREADY_REVIEWED, ALREADY_REVIEWED_MESSAGE)
