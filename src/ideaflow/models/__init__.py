"""ideaflow data models."""

from ideaflow.models.idea import Idea, Pipeline, PipelineIdea
from ideaflow.models.prototype import Prototype
from ideaflow.models.prototype_state import PrototypeState
from ideaflow.models.result import ErrorKind, ServiceError, ServiceResult

__all__ = [
    "ErrorKind",
    "Idea",
    "Pipeline",
    "PipelineIdea",
    "Prototype",
    "PrototypeState",
    "ServiceError",
    "ServiceResult",
]
