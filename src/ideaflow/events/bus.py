"""Async change-notification bus for ideaflow."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from ideaflow.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]


class EventBus:
    """In-process async pub/sub.

    Delivery is sequential per emit. A failing listener is logged and does
    not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)

    def on(self, event_type: EventType, listener: Listener) -> None:
        """Register a listener for a specific event type."""
        self._listeners[event_type].append(listener)

    def off(self, event_type: EventType, listener: Listener) -> None:
        """Remove a listener."""
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    def subscribe(
        self, event_types: Iterable[EventType], listener: Listener
    ) -> Callable[[], None]:
        """Register one listener for several event types; returns an unsubscribe callable."""
        types = tuple(event_types)
        for event_type in types:
            self.on(event_type, listener)

        def _unsubscribe() -> None:
            for event_type in types:
                self.off(event_type, listener)

        return _unsubscribe

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, []))

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """Emit an event to all registered listeners."""
        data = data or {}
        # Copy so listeners may unsubscribe while being notified
        listeners = list(self._listeners.get(event_type, []))

        for listener in listeners:
            try:
                await listener(event_type, data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in event listener for %s", event_type)
