"""FastMCP server: if_ideas, if_prototypes and if_state tools."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from ideaflow.ai.base import GenerationService
from ideaflow.ai.http import HttpGenerationService
from ideaflow.auth.jwt import TokenExpiredError, TokenInvalidError, verify_token
from ideaflow.auth.permissions import Actor
from ideaflow.config import Config
from ideaflow.core.generation import GenerationOrchestrator
from ideaflow.core.ideas import IdeaService
from ideaflow.core.lineage import VersionLineageManager
from ideaflow.core.pipeline import PipelineAggregator
from ideaflow.core.realtime import QueryCache, RealtimeBridge, RealtimeChannel
from ideaflow.core.session_state import SessionStateManager
from ideaflow.core.transitions import IdeaTransitionService
from ideaflow.events.bus import EventBus
from ideaflow.models.result import ServiceResult
from ideaflow.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str, code: str | None = None) -> str:
    """Return a versioned JSON error response."""
    data: dict[str, Any] = {"_v": "1.0", "error": msg}
    if code:
        data["code"] = code
    return _json(data)


def _payload(data: Any) -> dict[str, Any]:
    if data is None:
        return {"data": None}
    if isinstance(data, list):
        items = [_payload(item) for item in data]
        return {"count": len(items), "items": items}
    if hasattr(data, "to_response"):
        return data.to_response()
    if isinstance(data, dict):
        return data
    return {"data": data}


def _respond(result: ServiceResult) -> str:
    if not result.ok:
        return _err(result.error.message, str(result.error.kind))
    return _ok(_payload(result.data))


def create_server(
    db_path: str,
    config: Config | None = None,
    generation_service: GenerationService | None = None,
) -> FastMCP:
    """Create the FastMCP server over the database at ``db_path``.

    Resources are opened on the first tool call and released when the
    server's lifespan ends. ``server.close_resources()`` releases them
    directly; a later tool call opens them again.
    """
    config = config or Config()

    state: dict[str, Any] = {}
    _lock = asyncio.Lock()

    async def _init() -> dict[str, Any]:
        async with _lock:
            if "init_failed" in state:
                raise RuntimeError(f"ideaflow init previously failed for {db_path}")
            if "store" not in state:
                bus = EventBus()
                try:
                    store = SQLiteStore(Path(db_path), wal_mode=config.wal_mode, event_bus=bus)
                    await store.initialize()
                except Exception as e:
                    state["init_failed"] = True
                    logger.error("Failed to initialize database: %s", e)
                    raise RuntimeError(f"ideaflow init failed: {db_path}") from e
                cache = QueryCache()
                bridge = RealtimeBridge(RealtimeChannel(bus), cache)
                bridge.start()
                if generation_service is None:
                    service: GenerationService = HttpGenerationService(
                        config.ai_service_url, timeout=config.ai_service_timeout_seconds
                    )
                    state["owned_service"] = service
                else:
                    service = generation_service
                ideas = IdeaService(store)
                lineage = VersionLineageManager(store)
                state["store"] = store
                state["bridge"] = bridge
                state["ideas"] = ideas
                state["transitions"] = IdeaTransitionService(store, config)
                state["pipeline"] = PipelineAggregator(store, config, cache=cache)
                state["lineage"] = lineage
                state["generation"] = GenerationOrchestrator(
                    store, service, config, lineage=lineage, ideas=ideas
                )
        return state

    async def close_resources() -> bool:
        """Stop the bridge, close the store and any internally created AI client.

        Returns False when nothing was open.
        """
        async with _lock:
            if "store" not in state:
                return False
            state["bridge"].stop()
            try:
                await state["store"].close()
            finally:
                owned = state.get("owned_service")
                state.clear()
                if owned is not None:
                    await owned.aclose()
            logger.info("Closed ideaflow resources for %s", db_path)
            return True

    @asynccontextmanager
    async def _lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            yield {}
        finally:
            await close_resources()

    mcp = FastMCP("ideaflow", version="0.1.0", lifespan=_lifespan)
    mcp.close_resources = close_resources  # type: ignore[attr-defined]

    def _actor(token: str) -> Actor:
        return verify_token(token, config.jwt_secret)

    # ── if_ideas ──────────────────────────────────────────────

    @mcp.tool()
    async def if_ideas(
        action: Annotated[
            Literal[
                "submit", "get", "mine", "approve", "reject", "start_prd",
                "pipeline", "metrics", "recent", "list",
            ],
            Field(description="submit | get | mine | approve | reject | start_prd"
                  " | pipeline | metrics | recent | list"),
        ],
        token: Annotated[str, Field(description="JWT identifying the caller")],
        idea_id: Annotated[
            str | None,
            Field(description="Idea ID (get, approve, reject, start_prd)"),
        ] = None,
        title: Annotated[str | None, Field(description="Idea title (submit)")] = None,
        problem: Annotated[str | None, Field(description="Problem statement (submit)")] = None,
        solution: Annotated[str | None, Field(description="Proposed solution (submit)")] = None,
        impact: Annotated[str | None, Field(description="Expected impact (submit)")] = None,
        feedback: Annotated[
            str | None,
            Field(description="Rejection feedback, 20-500 chars (reject)"),
        ] = None,
        status: Annotated[str | None, Field(description="Filter by status (list)")] = None,
        search: Annotated[
            str | None,
            Field(description="Case-insensitive title/problem search (list)"),
        ] = None,
        sort: Annotated[
            Literal["newest", "oldest", "status"],
            Field(description="newest | oldest | status (list)"),
        ] = "newest",
        limit: Annotated[
            int | None,
            Field(description="Max results (recent, list)", ge=1, le=200),
        ] = None,
        detail: Annotated[
            str,
            Field(description="summary or full (get, mine)"),
        ] = "summary",
    ) -> str:
        """Submit ideas, review them (admin), move approved ideas into PRD development and read the admin pipeline views."""  # noqa: E501
        try:
            actor = _actor(token)
        except (TokenExpiredError, TokenInvalidError) as e:
            return _err(str(e), "UNAUTHORIZED")
        s = await _init()

        if action == "submit":
            result = await s["ideas"].submit(
                actor,
                title=title or "",
                problem=problem or "",
                solution=solution or "",
                impact=impact or "",
            )
            if result.ok:
                return _ok(result.data.to_response(detail="full"))
            return _respond(result)

        if action == "mine":
            result = await s["ideas"].list_for_user(actor.user_id)
            if not result.ok:
                return _respond(result)
            items = [i.to_response(detail=detail) for i in result.data]
            return _ok({"count": len(items), "ideas": items})

        if action in ("get", "approve", "reject", "start_prd") and not idea_id:
            return _err(f"idea_id is required for {action}")

        if action == "get":
            result = await s["ideas"].get(idea_id, actor)
            if result.ok:
                return _ok(result.data.to_response(detail=detail))
            return _respond(result)

        if action == "approve":
            return _respond(await s["transitions"].approve(idea_id, actor))

        if action == "reject":
            return _respond(await s["transitions"].reject(idea_id, feedback or "", actor))

        # Remaining actions are reviewer-only
        if not actor.is_admin:
            return _err("Admin role required", "UNAUTHORIZED")

        if action == "start_prd":
            return _respond(await s["ideas"].start_prd(idea_id))

        if action == "pipeline":
            return _respond(await s["pipeline"].pipeline())

        if action == "metrics":
            return _respond(await s["pipeline"].metrics())

        if action == "recent":
            return _respond(await s["pipeline"].recent_submissions(limit))

        if action == "list":
            return _respond(
                await s["pipeline"].all_ideas(status=status, search=search, sort=sort, limit=limit)
            )

        return _err(f"Unknown action: {action}")

    # ── if_prototypes ─────────────────────────────────────────

    @mcp.tool()
    async def if_prototypes(
        action: Annotated[
            Literal[
                "generate", "refine", "poll", "get", "history", "latest", "restore",
                "for_idea", "idea_versions", "mine",
            ],
            Field(description="generate | refine | poll | get | history | latest | restore"
                  " | for_idea | idea_versions | mine"),
        ],
        token: Annotated[str, Field(description="JWT identifying the caller")],
        idea_id: Annotated[
            str | None,
            Field(description="Idea ID (generate, for_idea, idea_versions)"),
        ] = None,
        prd_id: Annotated[
            str | None,
            Field(description="PRD / lineage ID (generate, history, latest)"),
        ] = None,
        prototype_id: Annotated[
            str | None,
            Field(description="Prototype version ID (refine, poll, get, restore)"),
        ] = None,
        prompt: Annotated[
            str | None,
            Field(description="Refinement prompt, 10-500 chars (refine)"),
        ] = None,
        wait: Annotated[
            bool,
            Field(description="Poll until the version is ready or failed (generate, refine)"),
        ] = False,
    ) -> str:
        """Generate, refine, poll and restore prototype versions, and read version lineages by PRD, idea or owner."""  # noqa: E501
        try:
            actor = _actor(token)
        except (TokenExpiredError, TokenInvalidError) as e:
            return _err(str(e), "UNAUTHORIZED")
        s = await _init()
        gen: GenerationOrchestrator = s["generation"]
        lineage: VersionLineageManager = s["lineage"]

        if action == "generate":
            if not idea_id or not prd_id:
                return _err("idea_id and prd_id are required for generate")
            if wait:
                return _respond(await gen.generate_and_wait(idea_id, prd_id, actor))
            return _respond(await gen.generate(idea_id, prd_id, actor))

        if action == "mine":
            return _respond(await lineage.list_for_user(actor.user_id))

        if action in ("for_idea", "idea_versions"):
            if not idea_id:
                return _err(f"idea_id is required for {action}")
            if action == "for_idea":
                return _respond(await lineage.get_by_idea(idea_id, actor))
            return _respond(await lineage.get_all_by_idea(idea_id, actor))

        if action in ("history", "latest"):
            if not prd_id:
                return _err(f"prd_id is required for {action}")
            if action == "history":
                return _respond(await lineage.get_version_history(prd_id, actor))
            return _respond(await lineage.get_latest(prd_id, actor))

        if not prototype_id:
            return _err(f"prototype_id is required for {action}")

        if action == "refine":
            if wait:
                return _respond(await gen.refine_and_wait(prototype_id, prompt or "", actor))
            return _respond(await gen.refine(prototype_id, prompt or "", actor))

        if action == "restore":
            return _respond(await lineage.restore(prototype_id, actor))

        # poll and get act on one version: owner or admin only
        found = await lineage.get(prototype_id, actor)
        if not found.ok:
            return _respond(found)

        if action == "poll":
            return _respond(await gen.poll_status(prototype_id))

        if action == "get":
            return _ok(found.data.to_response(detail="full"))

        return _err(f"Unknown action: {action}")

    # ── if_state ──────────────────────────────────────────────

    @mcp.tool()
    async def if_state(
        action: Annotated[
            Literal["load", "save", "delete"],
            Field(description="load | save | delete"),
        ],
        token: Annotated[str, Field(description="JWT identifying the caller")],
        prototype_id: Annotated[str, Field(description="Prototype version ID")],
        state: Annotated[
            dict[str, Any] | None,
            Field(description="Session state payload, camelCase schema v1.0 (save)"),
        ] = None,
    ) -> str:
        """Load, save or delete the caller's saved session state for one prototype version."""
        try:
            actor = _actor(token)
        except (TokenExpiredError, TokenInvalidError) as e:
            return _err(str(e), "UNAUTHORIZED")
        s = await _init()
        # One manager per call: the loaded "current" state is per session, not per server
        manager = SessionStateManager(s["store"])

        if action == "load":
            result = await manager.load(prototype_id, actor)
            if result.ok and result.data is None:
                return _ok({"state": None})
            if result.ok:
                return _ok({"state": result.data.to_payload()})
            return _respond(result)

        if action == "save":
            if state is None:
                return _err("state is required for save")
            result = await manager.save(prototype_id, state, actor)
            if result.ok:
                return _ok({"saved": True, "prototype_id": prototype_id})
            return _respond(result)

        if action == "delete":
            result = await manager.delete(prototype_id, actor)
            if result.ok:
                return _ok({"deleted": result.data})
            return _respond(result)

        return _err(f"Unknown action: {action}")

    return mcp
