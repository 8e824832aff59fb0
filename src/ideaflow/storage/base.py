"""Abstract storage interface for ideaflow."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any


class StorageError(Exception):
    """Raised when the store cannot complete an operation."""


class StorageBackend(ABC):
    """Persistent store for ideas, prototype lineages and session state.

    Every mutation that must be race-free is a single call here, so that
    backends can implement it as one atomic statement.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize database schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    # --- Idea operations ---

    @abstractmethod
    async def insert_idea(self, idea: dict[str, Any]) -> dict[str, Any]:
        """Insert an idea. Returns the inserted idea."""

    @abstractmethod
    async def get_idea(self, idea_id: str) -> dict[str, Any] | None:
        """Get an idea by ID."""

    @abstractmethod
    async def transition_idea(
        self,
        idea_id: str,
        *,
        from_statuses: Iterable[str],
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Apply updates only if the idea's status is one of from_statuses.

        The status check and the write are one atomic step. Returns the
        updated idea, or None when no row matched (missing or wrong status).
        """

    @abstractmethod
    async def list_ideas(
        self,
        *,
        status: str | None = None,
        exclude_status: str | None = None,
        user_id: str | None = None,
        search: str | None = None,
        sort: str = "newest",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List ideas. sort is one of newest, oldest, status."""

    @abstractmethod
    async def count_ideas_by_status(self) -> dict[str, int]:
        """Count ideas per status."""

    # --- Prototype lineage operations ---

    @abstractmethod
    async def append_prototype(
        self, prototype: dict[str, Any], *, initial: bool = False
    ) -> dict[str, Any] | None:
        """Insert a prototype as the next version of its PRD lineage.

        The version number (max + 1) is computed and inserted atomically;
        any ``version`` key in the input is ignored. With initial=True the
        insert only happens when the lineage is empty, and None is returned
        otherwise.
        """

    @abstractmethod
    async def get_prototype(self, prototype_id: str) -> dict[str, Any] | None:
        """Get a prototype version by ID."""

    @abstractmethod
    async def list_prototypes(self, prd_id: str) -> list[dict[str, Any]]:
        """All versions of a lineage, newest version first."""

    @abstractmethod
    async def get_latest_prototype(self, prd_id: str) -> dict[str, Any] | None:
        """Highest version of a lineage whose status is not failed."""

    @abstractmethod
    async def list_prototypes_for_idea(self, idea_id: str) -> list[dict[str, Any]]:
        """All versions generated for an idea, newest version first."""

    @abstractmethod
    async def get_latest_ready_for_idea(self, idea_id: str) -> dict[str, Any] | None:
        """Highest ready version generated for an idea."""

    @abstractmethod
    async def list_prototypes_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """All versions owned by a user, newest first."""

    @abstractmethod
    async def complete_prototype(
        self, prototype_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Apply updates only while the version is still generating."""

    # --- Session state operations ---

    @abstractmethod
    async def upsert_state(
        self, prototype_id: str, user_id: str, state: dict[str, Any], *, updated_at: str
    ) -> None:
        """Insert or replace saved session state (last write wins)."""

    @abstractmethod
    async def get_state(self, prototype_id: str, user_id: str) -> Any | None:
        """Raw saved state payload, unvalidated."""

    @abstractmethod
    async def delete_state(self, prototype_id: str, user_id: str) -> bool:
        """Delete saved state. Returns True if a row was removed."""

    # --- Stats ---

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
