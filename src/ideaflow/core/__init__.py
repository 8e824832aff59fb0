"""ideaflow services."""

from ideaflow.core.generation import GenerationOrchestrator, PollOutcome
from ideaflow.core.ideas import IdeaService
from ideaflow.core.lineage import VersionLineageManager
from ideaflow.core.pipeline import PipelineAggregator
from ideaflow.core.realtime import ConnectionState, QueryCache, RealtimeBridge, RealtimeChannel
from ideaflow.core.session_state import SessionStateManager
from ideaflow.core.transitions import IdeaTransitionService

__all__ = [
    "ConnectionState",
    "GenerationOrchestrator",
    "IdeaService",
    "IdeaTransitionService",
    "PipelineAggregator",
    "PollOutcome",
    "QueryCache",
    "RealtimeBridge",
    "RealtimeChannel",
    "SessionStateManager",
    "VersionLineageManager",
]
