"""ideaflow event system."""

from ideaflow.events.bus import EventBus
from ideaflow.events.types import IDEA_CHANGES, EventType

__all__ = ["IDEA_CHANGES", "EventBus", "EventType"]
