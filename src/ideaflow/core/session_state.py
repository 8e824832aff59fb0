"""Prototype Session State Manager.

Saves and restores a user's editing session for one prototype version.
Stored payloads are re-validated on every load; anything invalid is
treated as if nothing had been saved.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ideaflow.auth.permissions import Actor
from ideaflow.core.boundary import service_boundary
from ideaflow.models.prototype_state import MAX_STATE_SIZE_BYTES, PrototypeState
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionStateManager:
    """Per-version session state, keyed by (prototype id, user id)."""

    def __init__(
        self, store: StorageBackend, *, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self._store = store
        self._clock = clock
        self.current: PrototypeState | None = None

    @service_boundary("load prototype state")
    async def load(self, prototype_id: str, actor: Actor) -> ServiceResult[PrototypeState | None]:
        """Saved state for this version and user, or success with None."""
        payload = await self._store.get_state(prototype_id, actor.user_id)
        if payload is None:
            self.current = None
            return ServiceResult.success(None)

        state = PrototypeState.from_payload(payload, prototype_id=prototype_id)
        if state is None:
            logger.warning(
                "Discarding invalid saved state for prototype %s (user %s)",
                prototype_id,
                actor.user_id,
            )
        self.current = state
        return ServiceResult.success(state)

    @service_boundary("save prototype state")
    async def save(
        self, prototype_id: str, state: PrototypeState | dict[str, Any], actor: Actor
    ) -> ServiceResult[PrototypeState]:
        """Validate and upsert; the last write wins."""
        if isinstance(state, dict):
            try:
                state = PrototypeState.model_validate(state)
            except ValidationError as e:
                return ServiceResult.failure(
                    ErrorKind.VALIDATION_ERROR,
                    f"Invalid prototype state ({e.error_count()} errors)",
                )
        if state.prototype_id != prototype_id:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "State belongs to a different prototype version"
            )

        if await self._store.get_prototype(prototype_id) is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")

        size = state.serialized_size()
        if size > MAX_STATE_SIZE_BYTES:
            logger.warning("Prototype state for %s is large (%d bytes)", prototype_id, size)

        await self._store.upsert_state(
            prototype_id,
            actor.user_id,
            state.to_payload(),
            updated_at=self._clock().isoformat(),
        )
        self.current = state
        return ServiceResult.success(state)

    def clear_local(self) -> None:
        """Forget the loaded state. The stored copy is left alone."""
        self.current = None

    @service_boundary("delete prototype state")
    async def delete(self, prototype_id: str, actor: Actor) -> ServiceResult[bool]:
        deleted = await self._store.delete_state(prototype_id, actor.user_id)
        if self.current is not None and self.current.prototype_id == prototype_id:
            self.current = None
        return ServiceResult.success(deleted)
