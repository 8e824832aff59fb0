"""Versioned schema for a prototype's saved session state.

The payload is produced outside this package (the running prototype captures
its route, form fields, component toggles and localStorage) and is persisted
verbatim, so it is untrusted on the way back in. ``PrototypeState.from_payload``
is the only sanctioned way to turn a stored payload into a model: anything
that fails validation comes back as ``None``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

PROTOTYPE_STATE_VERSION = "1.0"

# Payloads above this size are still accepted, but logged
MAX_STATE_SIZE_BYTES = 100 * 1024


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RouteState(_CamelModel):
    pathname: str = "/"
    search: str = ""
    hash: str = ""
    state: dict[str, Any] | None = None


class StateMetadata(_CamelModel):
    capture_duration_ms: float = Field(0, alias="captureDurationMs")
    serialized_size_bytes: int = Field(0, alias="serializedSizeBytes")
    captured_at: str = Field(alias="capturedAt")
    capture_method: Literal["auto", "manual", "beforeUnload"] = Field(
        "auto", alias="captureMethod"
    )


class PrototypeState(_CamelModel):
    """Snapshot of an editing session, scoped to one prototype version."""

    version: Literal["1.0"] = PROTOTYPE_STATE_VERSION
    timestamp: str
    prototype_id: str = Field(alias="prototypeId")
    route: RouteState
    forms: dict[str, Any]
    components: dict[str, Any]
    local_storage: dict[str, str] = Field(alias="localStorage")
    metadata: StateMetadata

    @classmethod
    def empty(cls, prototype_id: str) -> PrototypeState:
        now = datetime.now(UTC).isoformat()
        return cls(
            timestamp=now,
            prototype_id=prototype_id,
            route=RouteState(),
            forms={},
            components={},
            local_storage={},
            metadata=StateMetadata(captured_at=now),
        )

    @classmethod
    def from_payload(
        cls, payload: Any, *, prototype_id: str | None = None
    ) -> PrototypeState | None:
        """Validate a stored payload. Returns None instead of raising."""
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning("Saved prototype state is not valid JSON; ignoring it")
                return None
        try:
            state = cls.model_validate(payload)
        except ValidationError as e:
            logger.warning(
                "Saved prototype state failed validation (%d errors); ignoring it",
                e.error_count(),
            )
            return None
        if prototype_id is not None and state.prototype_id != prototype_id:
            logger.warning(
                "Saved state belongs to prototype %s, not %s; ignoring it",
                state.prototype_id,
                prototype_id,
            )
            return None
        return state

    def to_payload(self) -> dict[str, Any]:
        """Wire/storage form (camelCase keys)."""
        return self.model_dump(by_alias=True)

    def serialized_size(self) -> int:
        return len(json.dumps(self.to_payload()).encode())
