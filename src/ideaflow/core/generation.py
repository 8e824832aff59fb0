"""Prototype Generation Orchestrator.

Each generation or refinement request runs through a small state machine:

    submitted -> polling -> ready | failed
    submitted -> failed              (service rejected the request outright)
    polling   -> timeout -> failed   (attempts exhausted)
    polling   -> cancelled           (caller set the cancel event)

The handle returned by the AI service is used as the new prototype's id, so
a version row exists from the moment the request is accepted. Sleep and
clock are injectable so tests drive the loop without waiting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel

from ideaflow.ai.base import GenerationRequest, GenerationService, GenerationServiceError
from ideaflow.auth.permissions import Actor, can_access
from ideaflow.config import Config
from ideaflow.core.boundary import service_boundary
from ideaflow.core.ideas import IdeaService
from ideaflow.core.lineage import VersionLineageManager
from ideaflow.models.idea import Idea
from ideaflow.models.prototype import Prototype
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "Generation failed. Please try again."
REFINEMENT_FAILED_MESSAGE = "Refinement failed. Please try again."
TIMEOUT_MESSAGE = "Generation timed out. Please try again."

# Recorded as the refinement prompt of a regenerated (not refined) version
REGENERATE_PROMPT = "Regenerated from PRD"

# Ideas must have a PRD underway before prototypes can be generated
_GENERATABLE_STATUSES = {"prd_development", "prototype_complete"}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PollOutcome(BaseModel):
    """How a poll loop ended, when it ended without failure."""

    prototype_id: str
    status: Literal["ready", "cancelled"]
    attempts: int
    prototype: Prototype | None = None

    def to_response(self) -> dict:
        data: dict[str, Any] = {
            "prototype_id": self.prototype_id,
            "status": self.status,
            "attempts": self.attempts,
        }
        if self.prototype is not None:
            data["prototype"] = self.prototype.to_response(detail="full")
        return data


def build_generation_prompt(idea: Idea) -> str:
    return (
        f"{idea.title}\n\n"
        f"Problem: {idea.problem}\n\n"
        f"Solution: {idea.solution}\n\n"
        f"Impact: {idea.impact}"
    )


class GenerationOrchestrator:
    """Submits generation requests and polls them to completion."""

    def __init__(
        self,
        store: StorageBackend,
        service: GenerationService,
        config: Config | None = None,
        *,
        lineage: VersionLineageManager | None = None,
        ideas: IdeaService | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._service = service
        self._config = config or Config()
        self._lineage = lineage or VersionLineageManager(store, clock=clock)
        self._ideas = ideas or IdeaService(store, clock=clock)
        self._sleep = sleep
        self._clock = clock
        # source prototype id -> id of the refinement generated from it
        self._refining: dict[str, str] = {}

    @service_boundary("generate prototype")
    async def generate(
        self,
        idea_id: str,
        prd_id: str,
        actor: Actor,
        context: dict[str, Any] | None = None,
    ) -> ServiceResult[Prototype]:
        """Start generating a prototype for a PRD.

        An empty lineage gets version 1; otherwise the new version is
        appended as a regeneration.
        """
        data = await self._store.get_idea(idea_id)
        if data is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Idea not found")
        idea = Idea(**data)
        if not can_access(actor, idea.user_id):
            return ServiceResult.failure(
                ErrorKind.UNAUTHORIZED, "Not allowed to generate prototypes for this idea"
            )
        if idea.status not in _GENERATABLE_STATUSES:
            return ServiceResult.failure(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot generate a prototype for an idea in {idea.status}",
            )

        request = GenerationRequest(
            target_id=prd_id,
            prompt=build_generation_prompt(idea),
            context={"idea_id": idea_id, "prd_id": prd_id, **(context or {})},
        )
        response = await self._service.submit(request)
        logger.info("Generation for PRD %s accepted as %s", prd_id, response.handle_id)

        existing = await self._store.list_prototypes(prd_id)
        if existing:
            created = await self._lineage.create_version(
                prd_id, idea_id, idea.user_id, REGENERATE_PROMPT, prototype_id=response.handle_id
            )
        else:
            created = await self._lineage.create_initial(
                prd_id, idea_id, idea.user_id, prototype_id=response.handle_id
            )
            if created.kind == ErrorKind.VALIDATION_ERROR:
                # A concurrent generate created v1 first
                created = await self._lineage.create_version(
                    prd_id,
                    idea_id,
                    idea.user_id,
                    REGENERATE_PROMPT,
                    prototype_id=response.handle_id,
                )
        if not created.ok:
            return created

        if response.status == "failed":
            return await self._fail_on_submit(created.data, GENERATION_FAILED_MESSAGE)
        return created

    @service_boundary("refine prototype")
    async def refine(
        self, prototype_id: str, prompt: str, actor: Actor
    ) -> ServiceResult[Prototype]:
        """Start a refinement of a ready version; the result is a new version."""
        prompt = (prompt or "").strip()
        low = self._config.refinement_min_length
        high = self._config.refinement_max_length
        if len(prompt) < low:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, f"Refinement prompt must be at least {low} characters"
            )
        if len(prompt) > high:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, f"Refinement prompt must be at most {high} characters"
            )

        data = await self._store.get_prototype(prototype_id)
        if data is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
        source = Prototype(**data)
        if not can_access(actor, source.user_id):
            return ServiceResult.failure(
                ErrorKind.UNAUTHORIZED, "Not allowed to refine this prototype"
            )
        if source.status != "ready":
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "Only ready versions can be refined"
            )
        if await self._refinement_in_flight(prototype_id):
            return ServiceResult.failure(
                ErrorKind.VALIDATION_ERROR, "A refinement of this version is already in progress"
            )

        # Reserve before the first await on the AI service
        self._refining[prototype_id] = ""
        try:
            request = GenerationRequest(
                target_id=source.prd_id,
                prompt=prompt,
                context={
                    "source_prototype_id": source.id,
                    "source_version": source.version,
                    "code": source.code,
                },
            )
            response = await self._service.submit(request)
            created = await self._lineage.create_version(
                source.prd_id,
                source.idea_id,
                source.user_id,
                prompt,
                prototype_id=response.handle_id,
            )
        except BaseException:
            self._refining.pop(prototype_id, None)
            raise
        if not created.ok:
            self._refining.pop(prototype_id, None)
            return created

        self._refining[prototype_id] = created.data.id
        logger.info(
            "Refining v%d of PRD %s as v%d",
            source.version,
            source.prd_id,
            created.data.version,
        )
        if response.status == "failed":
            return await self._fail_on_submit(created.data, REFINEMENT_FAILED_MESSAGE)
        return created

    @service_boundary("poll prototype status")
    async def poll_status(
        self, prototype_id: str, cancel: asyncio.Event | None = None
    ) -> ServiceResult[PollOutcome]:
        """Poll a generating version until it is ready, failed, timed out or cancelled."""
        try:
            return await self._poll(prototype_id, cancel)
        finally:
            self._release(prototype_id)

    async def generate_and_wait(
        self,
        idea_id: str,
        prd_id: str,
        actor: Actor,
        context: dict[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ServiceResult[PollOutcome]:
        started = await self.generate(idea_id, prd_id, actor, context)
        if not started.ok:
            return started
        return await self.poll_status(started.data.id, cancel)

    async def refine_and_wait(
        self,
        prototype_id: str,
        prompt: str,
        actor: Actor,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ServiceResult[PollOutcome]:
        started = await self.refine(prototype_id, prompt, actor)
        if not started.ok:
            return started
        return await self.poll_status(started.data.id, cancel)

    async def _poll(
        self, prototype_id: str, cancel: asyncio.Event | None
    ) -> ServiceResult[PollOutcome]:
        data = await self._store.get_prototype(prototype_id)
        if data is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
        prototype = Prototype(**data)
        if prototype.is_terminal:
            return self._terminal_result(prototype, attempts=0)

        max_attempts = self._config.poll_max_attempts
        started = self._clock()
        for attempt in range(1, max_attempts + 1):
            if cancel is not None and cancel.is_set():
                logger.info("Polling of %s cancelled after %d attempts", prototype_id, attempt - 1)
                return ServiceResult.success(
                    PollOutcome(prototype_id=prototype_id, status="cancelled", attempts=attempt - 1)
                )

            try:
                response = await self._service.poll(prototype_id)
            except GenerationServiceError as e:
                logger.warning(
                    "Poll %d/%d of %s failed (%s); will retry",
                    attempt,
                    max_attempts,
                    prototype_id,
                    e.category,
                )
            else:
                if response.status == "ready":
                    return await self._on_ready(prototype, response.url, response.code, attempt)
                if response.status == "failed":
                    return await self._on_failed(prototype, "ai_error", attempt)

            if attempt < max_attempts:
                await self._sleep(self._config.poll_interval_seconds)

        elapsed = (self._clock() - started).total_seconds()
        logger.warning(
            "Prototype %s still generating after %d attempts (%.1fs); marking failed",
            prototype_id,
            max_attempts,
            elapsed,
        )
        return await self._on_failed(prototype, "timeout", max_attempts)

    async def _on_ready(
        self,
        prototype: Prototype,
        url: str | None,
        code: str | dict[str, str] | None,
        attempts: int,
    ) -> ServiceResult[PollOutcome]:
        completed = await self._lineage.complete(prototype.id, "ready", url=url, code=code)
        if not completed.ok:
            return await self._reread(prototype.id, attempts)

        moved = await self._ideas.complete_prototype(prototype.idea_id)
        if not moved.ok:
            logger.warning(
                "Prototype %s is ready but idea %s was not moved to prototype_complete: %s",
                prototype.id,
                prototype.idea_id,
                moved.error.message,
            )
        return ServiceResult.success(
            PollOutcome(
                prototype_id=prototype.id,
                status="ready",
                attempts=attempts,
                prototype=completed.data,
            )
        )

    async def _on_failed(
        self, prototype: Prototype, reason: str, attempts: int
    ) -> ServiceResult[PollOutcome]:
        completed = await self._lineage.complete(prototype.id, "failed", failure_reason=reason)
        if not completed.ok:
            return await self._reread(prototype.id, attempts)
        return self._terminal_result(completed.data, attempts=attempts)

    async def _fail_on_submit(self, prototype: Prototype, message: str) -> ServiceResult:
        logger.warning("AI service rejected the request for %s outright", prototype.id)
        await self._lineage.complete(prototype.id, "failed", failure_reason="ai_error")
        self._release(prototype.id)
        return ServiceResult.failure(ErrorKind.AI_ERROR, message)

    async def _reread(self, prototype_id: str, attempts: int) -> ServiceResult[PollOutcome]:
        # Someone else completed the version first; report what they stored
        data = await self._store.get_prototype(prototype_id)
        if data is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Prototype version not found")
        return self._terminal_result(Prototype(**data), attempts=attempts)

    def _terminal_result(self, prototype: Prototype, *, attempts: int) -> ServiceResult[PollOutcome]:
        if prototype.status == "ready":
            return ServiceResult.success(
                PollOutcome(
                    prototype_id=prototype.id,
                    status="ready",
                    attempts=attempts,
                    prototype=prototype,
                )
            )
        if prototype.failure_reason == "timeout":
            return ServiceResult.failure(ErrorKind.TIMEOUT, TIMEOUT_MESSAGE)
        return ServiceResult.failure(ErrorKind.AI_ERROR, _failure_message(prototype))

    async def _refinement_in_flight(self, source_id: str) -> bool:
        if source_id not in self._refining:
            return False
        target_id = self._refining[source_id]
        if not target_id:
            return True
        target = await self._store.get_prototype(target_id)
        if target is not None and target["status"] == "generating":
            return True
        # The earlier refinement finished without being polled here
        del self._refining[source_id]
        return False

    def _release(self, prototype_id: str) -> None:
        for source_id, target_id in list(self._refining.items()):
            if target_id == prototype_id:
                del self._refining[source_id]


def _failure_message(prototype: Prototype) -> str:
    if prototype.refinement_prompt is None or prototype.refinement_prompt == REGENERATE_PROMPT:
        return GENERATION_FAILED_MESSAGE
    return REFINEMENT_FAILED_MESSAGE
