"""Idea model with lifecycle status and stage timing."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

VALID_STATUSES = {"submitted", "approved", "prd_development", "prototype_complete", "rejected"}

# Buckets of the active pipeline, in display order. "rejected" is terminal and excluded.
PIPELINE_STATUSES = ("submitted", "approved", "prd_development", "prototype_complete")


def _parse(ts: str) -> datetime:
    parsed = datetime.fromisoformat(ts)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class Idea(BaseModel):
    """A submitted idea moving through the triage pipeline."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str
    problem: str = ""
    solution: str = ""
    impact: str = ""
    status: str = "submitted"
    rejection_feedback: str | None = None
    rejected_by: str | None = None
    rejected_at: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None
    status_updated_at: str | None = None

    def stage_started_at(self) -> datetime:
        """When the idea entered its current status."""
        return _parse(self.status_updated_at or self.created_at)

    def days_in_stage(self, *, at: datetime | None = None) -> int:
        """Whole days spent in the current status, never negative."""
        at = at or datetime.now(UTC)
        days = (at - self.stage_started_at()).total_seconds() / 86400
        return max(0, math.floor(days))

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self, *, detail: str = "summary") -> dict:
        data = {
            "_v": "1.0",
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "user_id": self.user_id,
        }
        if detail != "summary":
            data.update(
                {
                    "problem": self.problem,
                    "solution": self.solution,
                    "impact": self.impact,
                    "rejection_feedback": self.rejection_feedback,
                    "rejected_by": self.rejected_by,
                    "rejected_at": self.rejected_at,
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                    "status_updated_at": self.status_updated_at,
                }
            )
        return data


class PipelineIdea(BaseModel):
    """An idea as shown in a pipeline bucket, with its derived stage age."""

    idea: Idea
    days_in_stage: int

    def to_response(self) -> dict:
        return {**self.idea.to_response(), "days_in_stage": self.days_in_stage}


class Pipeline(BaseModel):
    """Non-rejected ideas grouped by status, newest first in each bucket."""

    submitted: list[PipelineIdea] = Field(default_factory=list)
    approved: list[PipelineIdea] = Field(default_factory=list)
    prd_development: list[PipelineIdea] = Field(default_factory=list)
    prototype_complete: list[PipelineIdea] = Field(default_factory=list)

    def bucket(self, status: str) -> list[PipelineIdea]:
        if status not in PIPELINE_STATUSES:
            raise KeyError(status)
        return getattr(self, status)

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            **{s: [i.to_response() for i in self.bucket(s)] for s in PIPELINE_STATUSES},
        }
