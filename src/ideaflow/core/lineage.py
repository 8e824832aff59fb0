"""Version Lineage Manager.

A lineage is every prototype version generated for one PRD. Versions are
append-only: refinement and restore both add a new version, and the only
in-place change a version ever sees is its generating -> ready | failed
completion. Version numbers are assigned by the store inside the INSERT
itself, never computed here.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from ideaflow.auth.permissions import Actor, can_access
from ideaflow.core.boundary import service_boundary
from ideaflow.models.prototype import FAILURE_REASONS, VALID_STATUSES, Prototype
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def restore_prompt(version: int) -> str:
    return f"Restored from v{version}"


class VersionLineageManager:
    """Creates, completes and reads prototype versions."""

    def __init__(
        self, store: StorageBackend, *, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self._store = store
        self._clock = clock

    def _new_row(
        self,
        *,
        prototype_id: str | None,
        prd_id: str,
        idea_id: str,
        owner_id: str,
        status: str,
        url: str | None,
        code: str | dict[str, str] | None,
        refinement_prompt: str | None,
    ) -> dict:
        now = self._clock().isoformat()
        return {
            "id": prototype_id or str(uuid.uuid4()),
            "prd_id": prd_id,
            "idea_id": idea_id,
            "user_id": owner_id,
            "status": status,
            "url": url,
            "code": code,
            "refinement_prompt": refinement_prompt,
            "failure_reason": None,
            "created_at": now,
            "updated_at": now,
        }

    @service_boundary("create initial prototype")
    async def create_initial(
        self,
        prd_id: str,
        idea_id: str,
        owner_id: str,
        *,
        prototype_id: str | None = None,
        status: str = "generating",
        url: str | None = None,
        code: str | dict[str, str] | None = None,
    ) -> ServiceResult[Prototype]:
        """Version 1 of a new lineage. Fails if the lineage already has versions."""
        if status not in VALID_STATUSES:
            return ServiceResult.failure(ErrorKind.VALIDATION_ERROR, f"Invalid status: {status}")

        row = self._new_row(
            prototype_id=prototype_id,
            prd_id=prd_id,
            idea_id=idea_id,
            owner_id=owner_id,
            status=status,
            url=url,
            code=code,
            refinement_prompt=None,
        )
        inserted = await self._store.append_prototype(row, initial=True)
        if inserted is None:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "This PRD already has prototype versions"
            )
        logger.info("Created prototype %s (v1) for PRD %s", row["id"], prd_id)
        return ServiceResult.success(Prototype(**inserted))

    @service_boundary("create prototype version")
    async def create_version(
        self,
        prd_id: str,
        idea_id: str,
        owner_id: str,
        refinement_prompt: str,
        *,
        prototype_id: str | None = None,
        status: str = "generating",
        url: str | None = None,
        code: str | dict[str, str] | None = None,
    ) -> ServiceResult[Prototype]:
        """Append version max + 1 to a lineage.

        Args:
            prd_id: Lineage to append to
            idea_id: Idea the PRD belongs to
            owner_id: User that owns the new version
            refinement_prompt: What produced this version; must be non-empty
            prototype_id: Use this id (the generation handle) instead of a fresh one
            status: Initial status, "generating" unless the content is already known
            url: Preview location, when known
            code: Source, when known

        Returns:
            ServiceResult with the stored Prototype, version assigned by the store
        """
        prompt = (refinement_prompt or "").strip()
        if not prompt:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "A refinement prompt is required for new versions"
            )
        if status not in VALID_STATUSES:
            return ServiceResult.failure(ErrorKind.VALIDATION_ERROR, f"Invalid status: {status}")

        row = self._new_row(
            prototype_id=prototype_id,
            prd_id=prd_id,
            idea_id=idea_id,
            owner_id=owner_id,
            status=status,
            url=url,
            code=code,
            refinement_prompt=prompt,
        )
        inserted = await self._store.append_prototype(row)
        logger.info(
            "Created prototype %s (v%d) for PRD %s", row["id"], inserted["version"], prd_id
        )
        return ServiceResult.success(Prototype(**inserted))

    @service_boundary("restore prototype version")
    async def restore(self, prototype_id: str, actor: Actor) -> ServiceResult[Prototype]:
        """Append a copy of a ready version as the newest version.

        History is never touched; the restored copy is immediately ready.
        """
        source = await self._store.get_prototype(prototype_id)
        if source is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
        if not can_access(actor, source["user_id"]):
            return ServiceResult.failure(
                ErrorKind.UNAUTHORIZED, "Not allowed to restore this prototype"
            )
        if source["status"] != "ready":
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "Only ready versions can be restored"
            )

        row = self._new_row(
            prototype_id=None,
            prd_id=source["prd_id"],
            idea_id=source["idea_id"],
            owner_id=source["user_id"],
            status="ready",
            url=source["url"],
            code=source["code"],
            refinement_prompt=restore_prompt(source["version"]),
        )
        inserted = await self._store.append_prototype(row)
        logger.info(
            "Restored v%d of PRD %s as v%d",
            source["version"],
            source["prd_id"],
            inserted["version"],
        )
        return ServiceResult.success(Prototype(**inserted))

    def _check_access(
        self, actor: Actor | None, rows: list[dict]
    ) -> ServiceResult[None] | None:
        if actor is None or all(can_access(actor, row["user_id"]) for row in rows):
            return None
        return ServiceResult.failure(
            ErrorKind.UNAUTHORIZED, "Not allowed to view this prototype"
        )

    @service_boundary("get version history")
    async def get_version_history(
        self, prd_id: str, actor: Actor | None = None
    ) -> ServiceResult[list[Prototype]]:
        """Every version of a lineage, newest first."""
        rows = await self._store.list_prototypes(prd_id)
        denied = self._check_access(actor, rows)
        if denied is not None:
            return denied
        return ServiceResult.success([Prototype(**row) for row in rows])

    @service_boundary("get latest prototype")
    async def get_latest(
        self, prd_id: str, actor: Actor | None = None
    ) -> ServiceResult[Prototype | None]:
        """Highest non-failed version; success with None for an empty lineage."""
        row = await self._store.get_latest_prototype(prd_id)
        if row is None:
            return ServiceResult.success(None)
        denied = self._check_access(actor, [row])
        if denied is not None:
            return denied
        return ServiceResult.success(Prototype(**row))

    @service_boundary("get prototype")
    async def get(self, prototype_id: str, actor: Actor | None = None) -> ServiceResult[Prototype]:
        row = await self._store.get_prototype(prototype_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
        denied = self._check_access(actor, [row])
        if denied is not None:
            return denied
        return ServiceResult.success(Prototype(**row))

    @service_boundary("get prototype for idea")
    async def get_by_idea(
        self, idea_id: str, actor: Actor | None = None
    ) -> ServiceResult[Prototype | None]:
        """Newest ready version generated for an idea, None when it has none yet."""
        row = await self._store.get_latest_ready_for_idea(idea_id)
        if row is None:
            return ServiceResult.success(None)
        denied = self._check_access(actor, [row])
        if denied is not None:
            return denied
        return ServiceResult.success(Prototype(**row))

    @service_boundary("get all prototypes for idea")
    async def get_all_by_idea(
        self, idea_id: str, actor: Actor | None = None
    ) -> ServiceResult[list[Prototype]]:
        """Every version generated for an idea across its PRDs, newest version first."""
        rows = await self._store.list_prototypes_for_idea(idea_id)
        denied = self._check_access(actor, rows)
        if denied is not None:
            return denied
        return ServiceResult.success([Prototype(**row) for row in rows])

    @service_boundary("list prototypes for user")
    async def list_for_user(self, user_id: str) -> ServiceResult[list[Prototype]]:
        """Every version a user owns, newest first."""
        rows = await self._store.list_prototypes_for_user(user_id)
        return ServiceResult.success([Prototype(**row) for row in rows])

    @service_boundary("complete prototype")
    async def complete(
        self,
        prototype_id: str,
        status: str,
        *,
        url: str | None = None,
        code: str | dict[str, str] | None = None,
        failure_reason: str | None = None,
    ) -> ServiceResult[Prototype]:
        """Guarded generating -> ready | failed.

        A version that already left ``generating`` is not touched and the
        result is INVALID_TRANSITION.
        """
        if status not in ("ready", "failed"):
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, f"Cannot complete a version as {status}"
            )
        if status == "failed" and failure_reason not in FAILURE_REASONS:
            failure_reason = "ai_error"

        updates: dict = {"status": status, "updated_at": self._clock().isoformat()}
        if status == "ready":
            updates.update({"url": url, "code": code})
        else:
            updates["failure_reason"] = failure_reason

        row = await self._store.complete_prototype(prototype_id, updates)
        if row is None:
            existing = await self._store.get_prototype(prototype_id)
            if existing is None:
                return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
            logger.warning(
                "Prototype %s already %s; ignoring completion as %s",
                prototype_id,
                existing["status"],
                status,
            )
            return ServiceResult.failure(
                ErrorKind.INVALID_TRANSITION, f"Prototype version is already {existing['status']}"
            )
        return ServiceResult.success(Prototype(**row))
