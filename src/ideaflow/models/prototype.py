"""Prototype version model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

VALID_STATUSES = {"generating", "ready", "failed"}
TERMINAL_STATUSES = {"ready", "failed"}

# Coarse failure categories recorded on failed versions
FAILURE_REASONS = {"ai_error", "timeout"}


class Prototype(BaseModel):
    """One version in a PRD's prototype lineage."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prd_id: str
    idea_id: str
    user_id: str
    version: int = Field(ge=1)
    status: str = "generating"
    url: str | None = None
    # Single-file source, or a mapping of file path -> contents for multi-file projects
    code: str | dict[str, str] | None = None
    refinement_prompt: str | None = None
    failure_reason: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_response(self, *, detail: str = "summary") -> dict:
        data = {
            "_v": "1.0",
            "id": self.id,
            "prd_id": self.prd_id,
            "version": self.version,
            "status": self.status,
            "url": self.url,
            "refinement_prompt": self.refinement_prompt,
        }
        if detail != "summary":
            data.update(
                {
                    "idea_id": self.idea_id,
                    "user_id": self.user_id,
                    "code": self.code,
                    "failure_reason": self.failure_reason,
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                }
            )
        return data
