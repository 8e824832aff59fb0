"""Contract of the external AI prototype generation service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal

from pydantic import BaseModel

GenerationStatus = Literal["generating", "ready", "failed"]


class GenerationServiceError(Exception):
    """A generation request could not be completed.

    Only a coarse category travels with the exception; provider response
    bodies stay in the logs of the client that received them.
    """

    def __init__(self, category: str, message: str = "AI service request failed") -> None:
        super().__init__(message)
        self.category = category


class GenerationRequest(BaseModel):
    target_id: str
    prompt: str
    context: dict[str, Any] | None = None


class SubmitResponse(BaseModel):
    handle_id: str
    status: GenerationStatus


class PollResponse(BaseModel):
    status: GenerationStatus
    url: str | None = None
    code: str | dict[str, str] | None = None


class GenerationService(ABC):
    """Submit-then-poll interface to the generation backend."""

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> SubmitResponse:
        """Start a generation. The handle id becomes the new prototype id."""

    @abstractmethod
    async def poll(self, handle_id: str) -> PollResponse:
        """Current status of a generation handle."""

    async def aclose(self) -> None:
        """Release client resources."""
