"""Event type constants for ideaflow."""

from enum import StrEnum


class EventType(StrEnum):
    # Change stream of the ideas table, emitted by the store after commit
    IDEA_INSERTED = "idea.inserted"
    IDEA_UPDATED = "idea.updated"
    IDEA_DELETED = "idea.deleted"

    PROTOTYPE_INSERTED = "prototype.inserted"
    PROTOTYPE_UPDATED = "prototype.updated"

    # Channel lifecycle
    CHANNEL_ERROR = "channel.error"
    CHANNEL_CLOSED = "channel.closed"


IDEA_CHANGES = (EventType.IDEA_INSERTED, EventType.IDEA_UPDATED, EventType.IDEA_DELETED)
