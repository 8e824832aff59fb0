"""Pipeline Aggregator.

Read-side views for reviewers: the status pipeline, per-status metrics,
recent submissions and the filterable idea list. Raw rows may come from a
QueryCache kept fresh by the RealtimeBridge; days-in-stage is always
derived at read time from the injected clock and never stored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from ideaflow.config import Config
from ideaflow.core.boundary import service_boundary
from ideaflow.core.realtime import (
    IDEAS_KEY,
    METRICS_KEY,
    PIPELINE_KEY,
    RECENT_IDEAS_KEY,
    QueryCache,
)
from ideaflow.models.idea import PIPELINE_STATUSES, VALID_STATUSES, Idea, Pipeline, PipelineIdea
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageBackend

logger = logging.getLogger(__name__)

VALID_SORTS = ("newest", "oldest", "status")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PipelineAggregator:
    """Builds the admin read models from the store."""

    def __init__(
        self,
        store: StorageBackend,
        config: Config | None = None,
        *,
        cache: QueryCache | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or Config()
        self._cache = cache
        self._clock = clock

    async def _cached(self, key: tuple, loader):
        if self._cache is None:
            return await loader()
        return await self._cache.get_or_load(key, loader)

    @service_boundary("build pipeline")
    async def pipeline(self) -> ServiceResult[Pipeline]:
        """Non-rejected ideas grouped by status, newest first within each bucket."""

        async def load() -> list[dict]:
            return await self._store.list_ideas(exclude_status="rejected", sort="newest")

        rows = await self._cached(PIPELINE_KEY, load)
        now = self._clock()
        result = Pipeline()
        for row in rows:
            idea = Idea(**row)
            if idea.status not in PIPELINE_STATUSES:
                continue
            result.bucket(idea.status).append(
                PipelineIdea(idea=idea, days_in_stage=idea.days_in_stage(at=now))
            )
        return ServiceResult.success(result)

    @service_boundary("compute metrics")
    async def metrics(self) -> ServiceResult[dict[str, int]]:
        """Idea counts for every status, zero-filled."""

        async def load() -> dict[str, int]:
            counts = await self._store.count_ideas_by_status()
            return {status: counts.get(status, 0) for status in _ordered_statuses()}

        return ServiceResult.success(dict(await self._cached(METRICS_KEY, load)))

    @service_boundary("list recent submissions")
    async def recent_submissions(self, limit: int | None = None) -> ServiceResult[list[Idea]]:
        limit = limit or self._config.recent_submissions_limit

        async def load() -> list[dict]:
            return await self._store.list_ideas(sort="newest", limit=limit)

        rows = await self._cached((*RECENT_IDEAS_KEY, limit), load)
        return ServiceResult.success([Idea(**row) for row in rows])

    @service_boundary("list ideas")
    async def all_ideas(
        self,
        *,
        status: str | None = None,
        search: str | None = None,
        sort: str = "newest",
        limit: int | None = None,
    ) -> ServiceResult[list[Idea]]:
        """Filterable idea list. Search is case-insensitive over title and problem."""
        if status is not None and status not in VALID_STATUSES:
            return ServiceResult.failure(ErrorKind.VALIDATION_ERROR, f"Unknown status: {status}")
        if sort not in VALID_SORTS:
            return ServiceResult.failure(ErrorKind.VALIDATION_ERROR, f"Unknown sort: {sort}")
        limit = limit or self._config.idea_list_limit
        search = search.strip() if search else None

        async def load() -> list[dict]:
            return await self._store.list_ideas(
                status=status, search=search, sort=sort, limit=limit
            )

        rows = await self._cached((*IDEAS_KEY, status, search, sort, limit), load)
        return ServiceResult.success([Idea(**row) for row in rows])


def _ordered_statuses() -> tuple[str, ...]:
    return (*PIPELINE_STATUSES, "rejected")
