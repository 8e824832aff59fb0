"""AI prototype generation service clients."""

from ideaflow.ai.base import (
    GenerationRequest,
    GenerationService,
    GenerationServiceError,
    PollResponse,
    SubmitResponse,
)
from ideaflow.ai.http import HttpGenerationService

__all__ = [
    "GenerationRequest",
    "GenerationService",
    "GenerationServiceError",
    "HttpGenerationService",
    "PollResponse",
    "SubmitResponse",
]
