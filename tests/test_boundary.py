"""Tests for exception normalisation at the service boundary."""

from __future__ import annotations

import asyncio

import pytest

from ideaflow.core.boundary import UNKNOWN_ERROR_MESSAGE, service_boundary
from ideaflow.core.ideas import IdeaService
from ideaflow.core.lineage import VersionLineageManager
from ideaflow.core.transitions import IdeaTransitionService
from ideaflow.models.result import ErrorKind, ServiceResult


async def test_unexpected_store_error_becomes_unknown_error(store, monkeypatch, caplog):
    async def broken(*args, **kwargs):
        raise RuntimeError("disk gremlins in row 42")

    monkeypatch.setattr(store, "get_idea", broken)
    result = await IdeaService(store).get("idea-1")

    assert result.kind == ErrorKind.UNKNOWN_ERROR
    assert result.error.message == UNKNOWN_ERROR_MESSAGE
    assert "gremlins" not in result.error.message
    assert "gremlins" in caplog.text


async def test_unexpected_error_in_guarded_write(store, monkeypatch, admin, config):
    async def broken(*args, **kwargs):
        raise KeyError("status")

    monkeypatch.setattr(store, "transition_idea", broken)
    result = await IdeaTransitionService(store, config).approve("idea-1", admin)
    assert result.kind == ErrorKind.UNKNOWN_ERROR


async def test_cancellation_propagates(store, monkeypatch):
    async def cancelled(*args, **kwargs):
        raise asyncio.CancelledError()

    monkeypatch.setattr(store, "list_prototypes", cancelled)
    with pytest.raises(asyncio.CancelledError):
        await VersionLineageManager(store).get_version_history("prd-1")


async def test_cancelling_a_running_operation():
    started = asyncio.Event()

    @service_boundary("slow operation")
    async def slow() -> ServiceResult[None]:
        started.set()
        await asyncio.sleep(3600)
        return ServiceResult.success(None)

    task = asyncio.create_task(slow())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()
