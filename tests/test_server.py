"""Tests for the FastMCP server tools."""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from ideaflow.ai.http import HttpGenerationService
from ideaflow.auth.jwt import create_token
from ideaflow.config import Config
from ideaflow.server import create_server

from conftest import IMPACT, PROBLEM, SOLUTION, FakeGenerationService


def _data(result) -> dict:
    """Extract parsed JSON from CallToolResult."""
    return json.loads(result.content[0].text)


@pytest.fixture
def server_config(tmp_path) -> Config:
    return Config(home_path=tmp_path, poll_interval_seconds=0.0, poll_max_attempts=5)


@pytest.fixture
def user_token(server_config) -> str:
    return create_token("user-1", "user", server_config.jwt_secret)


@pytest.fixture
def admin_token(server_config) -> str:
    return create_token("admin-1", "admin", server_config.jwt_secret)


@pytest.fixture
async def server(tmp_path, server_config):
    mcp = create_server(
        str(tmp_path / "test.db"), server_config, generation_service=FakeGenerationService()
    )
    yield mcp
    await mcp.close_resources()


@pytest.fixture
async def client(server):
    async with Client(server) as c:
        yield c


async def _submit(client, token) -> dict:
    result = await client.call_tool("if_ideas", {
        "action": "submit",
        "token": token,
        "title": "Pipeline board",
        "problem": PROBLEM,
        "solution": SOLUTION,
        "impact": IMPACT,
    })
    return _data(result)


async def test_list_tools(client: Client):
    tools = await client.list_tools()
    assert {t.name for t in tools} == {"if_ideas", "if_prototypes", "if_state"}


async def test_invalid_token(client: Client):
    data = _data(await client.call_tool("if_ideas", {"action": "mine", "token": "garbage"}))
    assert data["code"] == "UNAUTHORIZED"
    assert data["_v"] == "1.0"


async def test_submit_and_review(client: Client, user_token, admin_token):
    idea = await _submit(client, user_token)
    assert idea["status"] == "submitted"
    assert idea["_v"] == "1.0"

    approved = _data(await client.call_tool("if_ideas", {
        "action": "approve", "token": admin_token, "idea_id": idea["id"],
    }))
    assert approved["status"] == "approved"

    again = _data(await client.call_tool("if_ideas", {
        "action": "approve", "token": admin_token, "idea_id": idea["id"],
    }))
    assert again["code"] == "ALREADY_REVIEWED"

    pipeline = _data(await client.call_tool("if_ideas", {"action": "pipeline", "token": admin_token}))
    assert pipeline["submitted"] == []
    assert [i["id"] for i in pipeline["approved"]] == [idea["id"]]
    assert pipeline["approved"][0]["days_in_stage"] == 0


async def test_user_cannot_review(client: Client, user_token):
    idea = await _submit(client, user_token)
    data = _data(await client.call_tool("if_ideas", {
        "action": "approve", "token": user_token, "idea_id": idea["id"],
    }))
    assert data["code"] == "UNAUTHORIZED"

    data = _data(await client.call_tool("if_ideas", {"action": "metrics", "token": user_token}))
    assert data["code"] == "UNAUTHORIZED"


async def test_reject_validation(client: Client, user_token, admin_token):
    idea = await _submit(client, user_token)
    data = _data(await client.call_tool("if_ideas", {
        "action": "reject", "token": admin_token, "idea_id": idea["id"], "feedback": "short",
    }))
    assert data["code"] == "VALIDATION_ERROR"


async def test_metrics_refresh_after_review(client: Client, user_token, admin_token):
    idea = await _submit(client, user_token)
    before = _data(await client.call_tool("if_ideas", {"action": "metrics", "token": admin_token}))
    assert before["submitted"] == 1

    await client.call_tool("if_ideas", {
        "action": "reject",
        "token": admin_token,
        "idea_id": idea["id"],
        "feedback": "Overlaps with an existing roadmap item.",
    })
    after = _data(await client.call_tool("if_ideas", {"action": "metrics", "token": admin_token}))
    assert after["submitted"] == 0
    assert after["rejected"] == 1


async def test_prototype_flow(client: Client, user_token, admin_token):
    idea = await _submit(client, user_token)
    for action in ("approve", "start_prd"):
        await client.call_tool("if_ideas", {
            "action": action, "token": admin_token, "idea_id": idea["id"],
        })

    generated = _data(await client.call_tool("if_prototypes", {
        "action": "generate",
        "token": user_token,
        "idea_id": idea["id"],
        "prd_id": "prd-1",
        "wait": True,
    }))
    assert generated["status"] == "ready"
    v1 = generated["prototype"]
    assert v1["version"] == 1

    refined = _data(await client.call_tool("if_prototypes", {
        "action": "refine",
        "token": user_token,
        "prototype_id": v1["id"],
        "prompt": "Add a dark mode toggle",
        "wait": True,
    }))
    assert refined["prototype"]["version"] == 2

    restored = _data(await client.call_tool("if_prototypes", {
        "action": "restore", "token": user_token, "prototype_id": v1["id"],
    }))
    assert restored["version"] == 3
    assert restored["refinement_prompt"] == "Restored from v1"

    history = _data(await client.call_tool("if_prototypes", {
        "action": "history", "token": user_token, "prd_id": "prd-1",
    }))
    assert [p["version"] for p in history["items"]] == [3, 2, 1]

    mine = _data(await client.call_tool("if_ideas", {"action": "mine", "token": user_token}))
    assert mine["ideas"][0]["status"] == "prototype_complete"


async def test_refine_prompt_too_short(client: Client, user_token):
    data = _data(await client.call_tool("if_prototypes", {
        "action": "refine", "token": user_token, "prototype_id": "p1", "prompt": "short",
    }))
    assert data["code"] == "VALIDATION_ERROR"


async def test_latest_of_empty_lineage(client: Client, user_token):
    data = _data(await client.call_tool("if_prototypes", {
        "action": "latest", "token": user_token, "prd_id": "nothing-yet",
    }))
    assert data["data"] is None
    assert "error" not in data


async def test_state_round_trip(client: Client, user_token, admin_token):
    idea = await _submit(client, user_token)
    for action in ("approve", "start_prd"):
        await client.call_tool("if_ideas", {
            "action": action, "token": admin_token, "idea_id": idea["id"],
        })
    generated = _data(await client.call_tool("if_prototypes", {
        "action": "generate", "token": user_token, "idea_id": idea["id"],
        "prd_id": "prd-1", "wait": True,
    }))
    prototype_id = generated["prototype_id"]

    empty = _data(await client.call_tool("if_state", {
        "action": "load", "token": user_token, "prototype_id": prototype_id,
    }))
    assert empty["state"] is None

    state = {
        "version": "1.0",
        "timestamp": "2026-06-01T10:00:00+00:00",
        "prototypeId": prototype_id,
        "route": {"pathname": "/", "search": "", "hash": ""},
        "forms": {},
        "components": {},
        "localStorage": {"theme": "dark"},
        "metadata": {"capturedAt": "2026-06-01T10:00:00+00:00"},
    }
    saved = _data(await client.call_tool("if_state", {
        "action": "save", "token": user_token, "prototype_id": prototype_id, "state": state,
    }))
    assert saved["saved"] is True

    loaded = _data(await client.call_tool("if_state", {
        "action": "load", "token": user_token, "prototype_id": prototype_id,
    }))
    assert loaded["state"]["localStorage"] == {"theme": "dark"}

    deleted = _data(await client.call_tool("if_state", {
        "action": "delete", "token": user_token, "prototype_id": prototype_id,
    }))
    assert deleted["deleted"] is True


async def _generated(client, user_token, admin_token) -> dict:
    idea = await _submit(client, user_token)
    for action in ("approve", "start_prd"):
        await client.call_tool("if_ideas", {
            "action": action, "token": admin_token, "idea_id": idea["id"],
        })
    generated = _data(await client.call_tool("if_prototypes", {
        "action": "generate", "token": user_token, "idea_id": idea["id"],
        "prd_id": "prd-1", "wait": True,
    }))
    return generated["prototype"]


async def test_prototype_reads_by_idea_and_owner(client: Client, user_token, admin_token):
    v1 = await _generated(client, user_token, admin_token)

    linked = _data(await client.call_tool("if_prototypes", {
        "action": "for_idea", "token": user_token, "idea_id": v1["idea_id"],
    }))
    assert linked["id"] == v1["id"]

    versions = _data(await client.call_tool("if_prototypes", {
        "action": "idea_versions", "token": user_token, "idea_id": v1["idea_id"],
    }))
    assert [p["version"] for p in versions["items"]] == [1]

    mine = _data(await client.call_tool("if_prototypes", {"action": "mine", "token": user_token}))
    assert mine["count"] == 1

    none_yet = _data(await client.call_tool("if_prototypes", {
        "action": "for_idea", "token": user_token, "idea_id": "no-prototypes",
    }))
    assert none_yet["data"] is None


async def test_other_users_cannot_read_prototypes(
    client: Client, server_config, user_token, admin_token
):
    v1 = await _generated(client, user_token, admin_token)
    other = create_token("user-2", "user", server_config.jwt_secret)

    for args in (
        {"action": "get", "prototype_id": v1["id"]},
        {"action": "poll", "prototype_id": v1["id"]},
        {"action": "history", "prd_id": "prd-1"},
        {"action": "latest", "prd_id": "prd-1"},
        {"action": "for_idea", "idea_id": v1["idea_id"]},
        {"action": "idea_versions", "idea_id": v1["idea_id"]},
    ):
        data = _data(await client.call_tool("if_prototypes", {**args, "token": other}))
        assert data["code"] == "UNAUTHORIZED", args

    mine = _data(await client.call_tool("if_prototypes", {"action": "mine", "token": other}))
    assert mine["count"] == 0

    as_admin = _data(await client.call_tool("if_prototypes", {
        "action": "get", "token": admin_token, "prototype_id": v1["id"],
    }))
    assert as_admin["version"] == 1


async def test_close_resources_releases_and_reopens(server, client: Client, user_token):
    await _submit(client, user_token)
    assert await server.close_resources() is True
    assert await server.close_resources() is False

    # The next call opens the store again over the same database
    mine = _data(await client.call_tool("if_ideas", {"action": "mine", "token": user_token}))
    assert mine["count"] == 1


async def test_close_resources_closes_owned_ai_client(
    tmp_path, server_config, user_token, monkeypatch
):
    closed = []

    async def record_close(self):
        closed.append(self)

    monkeypatch.setattr(HttpGenerationService, "aclose", record_close)
    mcp = create_server(str(tmp_path / "owned.db"), server_config)
    async with Client(mcp) as c:
        await _submit(c, user_token)
    await mcp.close_resources()

    assert len(closed) == 1
    assert await mcp.close_resources() is False


async def test_injected_ai_service_is_left_open(tmp_path, server_config, user_token):
    ai = FakeGenerationService()
    closed = []

    async def record_close():
        closed.append(True)

    ai.aclose = record_close
    mcp = create_server(str(tmp_path / "injected.db"), server_config, generation_service=ai)
    async with Client(mcp) as c:
        await _submit(c, user_token)
    await mcp.close_resources()
    assert closed == []
