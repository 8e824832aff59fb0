"""Realtime Synchronization Bridge.

Keeps cached admin views fresh: every insert/update/delete on the ideas
table, as published on the store's change stream, invalidates the cached
metrics, recent submissions, idea list and pipeline views so the next read
recomputes them. Delivery is at-least-once and unordered; invalidation is
idempotent so neither matters.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable
from enum import StrEnum
from typing import Any

from ideaflow.events.bus import EventBus
from ideaflow.events.types import IDEA_CHANGES, EventType

logger = logging.getLogger(__name__)

QueryKey = tuple[Hashable, ...]

METRICS_KEY: QueryKey = ("admin", "metrics")
RECENT_IDEAS_KEY: QueryKey = ("admin", "recent-ideas")
IDEAS_KEY: QueryKey = ("admin", "ideas")
PIPELINE_KEY: QueryKey = ("admin", "pipeline")

ADMIN_QUERY_KEYS: tuple[QueryKey, ...] = (METRICS_KEY, RECENT_IDEAS_KEY, IDEAS_KEY, PIPELINE_KEY)


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class QueryCache:
    """Keyed cache of computed views.

    Invalidating a key also drops every entry the key is a prefix of, so
    ``("admin", "ideas")`` covers ``("admin", "ideas", "submitted", ...)``.
    """

    def __init__(self) -> None:
        self._entries: dict[QueryKey, Any] = {}

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: QueryKey, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def set(self, key: QueryKey, value: Any) -> None:
        self._entries[key] = value

    async def get_or_load(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._entries:
            return self._entries[key]
        value = await loader()
        self._entries[key] = value
        return value

    def invalidate(self, key: QueryKey) -> int:
        """Drop ``key`` and everything under it. Returns the number of entries removed."""
        size = len(key)
        stale = [k for k in self._entries if k[:size] == key]
        for k in stale:
            del self._entries[k]
        return len(stale)


EventCallback = Callable[[EventType, dict[str, Any]], Awaitable[None]]
StatusCallback = Callable[[ConnectionState, str | None], None]


class RealtimeChannel:
    """Subscription to the ideas change stream published on an EventBus.

    Channel problems are published on the same bus as CHANNEL_ERROR (with
    ``{"reason": "timeout"}`` for a subscription timeout) and CHANNEL_CLOSED.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._bus = event_bus
        self._unsubscribe: Callable[[], None] | None = None
        self._on_status: StatusCallback | None = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def subscribe(self, on_event: EventCallback, on_status: StatusCallback) -> None:
        if self._unsubscribe is not None:
            raise RuntimeError("Channel is already subscribed")
        self._on_status = on_status
        on_status(ConnectionState.CONNECTING, None)

        unsub_changes = self._bus.subscribe(IDEA_CHANGES, on_event)
        unsub_lifecycle = self._bus.subscribe(
            (EventType.CHANNEL_ERROR, EventType.CHANNEL_CLOSED), self._on_lifecycle
        )

        def _unsubscribe() -> None:
            unsub_changes()
            unsub_lifecycle()

        self._unsubscribe = _unsubscribe
        on_status(ConnectionState.SUBSCRIBED, None)

    def unsubscribe(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        on_status, self._on_status = self._on_status, None
        if on_status is not None:
            on_status(ConnectionState.CLOSED, None)

    async def _on_lifecycle(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._on_status is None:
            return
        if event_type == EventType.CHANNEL_CLOSED:
            self.unsubscribe()
        elif data.get("reason") == "timeout":
            self._on_status(ConnectionState.TIMED_OUT, "Subscription timed out")
        else:
            self._on_status(ConnectionState.ERROR, data.get("message") or "Channel error")


class RealtimeBridge:
    """Invalidates cached admin views whenever an idea changes."""

    def __init__(
        self,
        channel: RealtimeChannel,
        cache: QueryCache,
        *,
        keys: tuple[QueryKey, ...] = ADMIN_QUERY_KEYS,
    ) -> None:
        self._channel = channel
        self._cache = cache
        self._keys = keys
        self._state = ConnectionState.CLOSED
        self._error: str | None = None
        self._status_listeners: list[StatusCallback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.SUBSCRIBED

    @property
    def error(self) -> str | None:
        return self._error

    def add_status_listener(self, listener: StatusCallback) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    def start(self) -> None:
        """Subscribe (or re-subscribe after stop)."""
        if self._channel.active:
            return
        self._error = None
        self._channel.subscribe(self._on_change, self._set_state)

    def stop(self) -> None:
        self._channel.unsubscribe()

    async def _on_change(self, event_type: EventType, data: dict[str, Any]) -> None:
        logger.debug("Idea change %s (%s); invalidating admin views", event_type, data.get("id"))
        for key in self._keys:
            self._cache.invalidate(key)

    def _set_state(self, state: ConnectionState, error: str | None) -> None:
        self._state = state
        if state in (ConnectionState.ERROR, ConnectionState.TIMED_OUT):
            self._error = error
            logger.warning("Realtime channel %s: %s", state, error)
        elif state == ConnectionState.SUBSCRIBED:
            self._error = None
        for listener in list(self._status_listeners):
            listener(state, error)
