"""SQLite storage backend with WAL mode and a change stream."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiosqlite

from ideaflow.events.bus import EventBus
from ideaflow.events.types import EventType
from ideaflow.storage.base import StorageBackend, StorageError

logger = logging.getLogger(__name__)

# Columns each table allows in UPDATE statements
_ALLOWED_COLUMNS: dict[str, set[str]] = {
    "ideas": {
        "status",
        "rejection_feedback",
        "rejected_by",
        "rejected_at",
        "updated_at",
        "status_updated_at",
    },
    "prototypes": {
        "status",
        "url",
        "code",
        "failure_reason",
        "updated_at",
    },
}

_SORT_ORDERS = {
    "newest": "created_at DESC",
    "oldest": "created_at ASC",
    "status": "status ASC, created_at DESC",
}

_PROTOTYPE_COLUMNS = (
    "id, prd_id, idea_id, user_id, version, status, url, code,"
    " refinement_prompt, failure_reason, created_at, updated_at"
)
_PROTOTYPE_VALUES = (
    ":id, :prd_id, :idea_id, :user_id, {version}, :status, :url, :code,"
    " :refinement_prompt, :failure_reason, :created_at, :updated_at"
)

# Attempts at appending a version when a concurrent writer took the same number
_APPEND_ATTEMPTS = 3


def _validate_update_keys(table: str, updates: dict[str, Any]) -> dict[str, Any]:
    """Filter update dict to only allowed column names."""
    allowed = _ALLOWED_COLUMNS.get(table, set())
    filtered = {k: v for k, v in updates.items() if k in allowed}
    rejected = set(updates.keys()) - allowed - {"id"}
    if rejected:
        logger.warning("Rejected invalid column names for %s: %s", table, rejected)
    return filtered


class SQLiteStore(StorageBackend):
    """SQLite-based storage.

    When an event bus is given, committed changes to the ideas and
    prototypes tables are published on it (the store's change stream).
    """

    def __init__(
        self,
        db_path: Path,
        *,
        wal_mode: bool = True,
        event_bus: EventBus | None = None,
    ) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.event_bus = event_bus
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_load_sql("ideaflow.sql"))
        await self._db.commit()
        logger.info("Initialized SQLite store at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store not initialized. Call initialize() first.")
        return self._db

    async def _notify(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, data)

    # --- Idea operations ---

    async def insert_idea(self, idea: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO ideas (id, user_id, title, problem, solution, impact, status,
               rejection_feedback, rejected_by, rejected_at, created_at, updated_at,
               status_updated_at)
               VALUES (:id, :user_id, :title, :problem, :solution, :impact, :status,
               :rejection_feedback, :rejected_by, :rejected_at, :created_at, :updated_at,
               :status_updated_at)""",
            idea,
        )
        await self.db.commit()
        await self._notify(EventType.IDEA_INSERTED, {"table": "ideas", "id": idea["id"]})
        return idea

    async def get_idea(self, idea_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def transition_idea(
        self,
        idea_id: str,
        *,
        from_statuses: Iterable[str],
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        expected = list(from_statuses)
        if not expected:
            raise ValueError("from_statuses cannot be empty")

        updates = _validate_update_keys("ideas", updates)
        if not updates:
            raise ValueError("transition requires at least one column to update")

        set_clauses = [f"{key} = ?" for key in updates]
        values: list[Any] = list(updates.values())
        placeholders = ",".join("?" * len(expected))
        values.extend([idea_id, *expected])

        # The WHERE clause is the guard: status check and write in one statement
        cursor = await self.db.execute(
            f"UPDATE ideas SET {', '.join(set_clauses)}"
            f" WHERE id = ? AND status IN ({placeholders})",
            values,
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            return None

        await self._notify(EventType.IDEA_UPDATED, {"table": "ideas", "id": idea_id})
        return await self.get_idea(idea_id)

    async def list_ideas(
        self,
        *,
        status: str | None = None,
        exclude_status: str | None = None,
        user_id: str | None = None,
        search: str | None = None,
        sort: str = "newest",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        if status:
            conditions.append("status = ?")
            params.append(status)
        if exclude_status:
            conditions.append("status != ?")
            params.append(exclude_status)
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if search and search.strip():
            pattern = "%" + _escape_like(search.strip()) + "%"
            conditions.append("(title LIKE ? ESCAPE '\\' OR problem LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])

        order = _SORT_ORDERS.get(sort)
        if order is None:
            raise ValueError(f"Invalid sort: {sort}")

        where = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT * FROM ideas WHERE {where} ORDER BY {order}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        cursor = await self.db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def count_ideas_by_status(self) -> dict[str, int]:
        cursor = await self.db.execute(
            "SELECT status, COUNT(*) AS count FROM ideas GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {row["status"]: row["count"] for row in rows}

    # --- Prototype lineage operations ---

    async def append_prototype(
        self, prototype: dict[str, Any], *, initial: bool = False
    ) -> dict[str, Any] | None:
        params = _serialize_json_fields(prototype, ["code"])
        if initial:
            query = (
                f"INSERT INTO prototypes ({_PROTOTYPE_COLUMNS})"
                f" SELECT {_PROTOTYPE_VALUES.format(version='1')}"
                " WHERE NOT EXISTS (SELECT 1 FROM prototypes WHERE prd_id = :prd_id)"
            )
        else:
            # Next version is computed inside the INSERT, so no other writer can
            # slip in between reading MAX(version) and using it.
            query = (
                f"INSERT INTO prototypes ({_PROTOTYPE_COLUMNS})"
                f" SELECT {_PROTOTYPE_VALUES.format(version='COALESCE(MAX(version), 0) + 1')}"
                " FROM prototypes WHERE prd_id = :prd_id"
            )

        for attempt in range(1, _APPEND_ATTEMPTS + 1):
            try:
                cursor = await self.db.execute(query, params)
                await self.db.commit()
                break
            except aiosqlite.IntegrityError as e:
                await self.db.rollback()
                if "prototypes.version" not in str(e) or attempt == _APPEND_ATTEMPTS:
                    raise StorageError(f"Could not append prototype version: {e}") from e
                logger.warning(
                    "Version conflict appending to lineage %s (attempt %d), retrying",
                    prototype["prd_id"],
                    attempt,
                )

        if cursor.rowcount == 0:
            return None

        inserted = await self.get_prototype(prototype["id"])
        await self._notify(
            EventType.PROTOTYPE_INSERTED,
            {"table": "prototypes", "id": prototype["id"], "prd_id": prototype["prd_id"]},
        )
        return inserted

    async def get_prototype(self, prototype_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM prototypes WHERE id = ?", (prototype_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_prototypes(self, prd_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM prototypes WHERE prd_id = ? ORDER BY version DESC", (prd_id,)
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def get_latest_prototype(self, prd_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            """SELECT * FROM prototypes WHERE prd_id = ? AND status != 'failed'
               ORDER BY version DESC LIMIT 1""",
            (prd_id,),
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_prototypes_for_idea(self, idea_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM prototypes WHERE idea_id = ? ORDER BY version DESC, created_at DESC",
            (idea_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def get_latest_ready_for_idea(self, idea_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            """SELECT * FROM prototypes WHERE idea_id = ? AND status = 'ready'
               ORDER BY version DESC, created_at DESC LIMIT 1""",
            (idea_id,),
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_prototypes_for_user(self, user_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM prototypes WHERE user_id = ? ORDER BY created_at DESC, version DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def complete_prototype(
        self, prototype_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        updates = _validate_update_keys("prototypes", updates)
        updates = _serialize_json_fields(updates, ["code"])
        if not updates:
            raise ValueError("completion requires at least one column to update")

        set_clauses = [f"{key} = ?" for key in updates]
        values: list[Any] = [*updates.values(), prototype_id]
        cursor = await self.db.execute(
            f"UPDATE prototypes SET {', '.join(set_clauses)}"
            " WHERE id = ? AND status = 'generating'",
            values,
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            return None

        await self._notify(
            EventType.PROTOTYPE_UPDATED, {"table": "prototypes", "id": prototype_id}
        )
        return await self.get_prototype(prototype_id)

    # --- Session state operations ---

    async def upsert_state(
        self, prototype_id: str, user_id: str, state: dict[str, Any], *, updated_at: str
    ) -> None:
        await self.db.execute(
            """INSERT INTO prototype_states (prototype_id, user_id, state, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(prototype_id, user_id)
               DO UPDATE SET state = excluded.state, updated_at = excluded.updated_at""",
            (prototype_id, user_id, json.dumps(state), updated_at),
        )
        await self.db.commit()

    async def get_state(self, prototype_id: str, user_id: str) -> Any | None:
        cursor = await self.db.execute(
            "SELECT state FROM prototype_states WHERE prototype_id = ? AND user_id = ?",
            (prototype_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)["state"]

    async def delete_state(self, prototype_id: str, user_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM prototype_states WHERE prototype_id = ? AND user_id = ?",
            (prototype_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    # --- Stats ---

    async def get_stats(self) -> dict[str, Any]:
        by_status = await self.count_ideas_by_status()

        cursor = await self.db.execute("SELECT COUNT(*) FROM prototypes")
        row = await cursor.fetchone()
        prototype_count = row[0] if row else 0

        cursor = await self.db.execute("SELECT COUNT(DISTINCT prd_id) FROM prototypes")
        row = await cursor.fetchone()
        lineage_count = row[0] if row else 0

        cursor = await self.db.execute("SELECT COUNT(*) FROM prototype_states")
        row = await cursor.fetchone()
        state_count = row[0] if row else 0

        return {
            "ideas": sum(by_status.values()),
            "ideas_by_status": by_status,
            "prototypes": prototype_count,
            "lineages": lineage_count,
            "saved_states": state_count,
            "db_path": str(self.db_path),
        }


# --- Helpers ---


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()


def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert an aiosqlite Row to a dict, deserializing JSON fields."""
    d = dict(row)
    for key in ("code", "state"):
        if key in d and isinstance(d[key], str):
            try:
                d[key] = json.loads(d[key])
            except (json.JSONDecodeError, TypeError):
                pass
    return d


def _serialize_json_fields(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Serialize fields to JSON text for SQLite storage.

    Strings are encoded too, so a single-file source that happens to look
    like JSON still round-trips as a string.
    """
    result = dict(data)
    for field in fields:
        if field in result and result[field] is not None:
            result[field] = json.dumps(result[field])
    return result


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
