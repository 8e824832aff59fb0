"""Tests for idea submission and the forward stage moves."""

from __future__ import annotations

import pytest

from ideaflow.core.ideas import IdeaService, validate_submission
from ideaflow.core.transitions import IdeaTransitionService
from ideaflow.models.result import ErrorKind

PROBLEM = "Reviewers lose track of which ideas are waiting on them for feedback."
SOLUTION = "A shared pipeline board that groups every idea by its current review stage."
IMPACT = "Fewer stalled ideas and faster review turnaround."


@pytest.fixture
def ideas(store):
    return IdeaService(store)


async def _submit(ideas, actor, **overrides):
    fields = {"title": "Pipeline board", "problem": PROBLEM, "solution": SOLUTION, "impact": IMPACT}
    fields.update(overrides)
    return await ideas.submit(actor, **fields)


async def test_submit_creates_submitted_idea(ideas, user, store):
    result = await _submit(ideas, user, title="  Pipeline board  ")
    assert result.ok
    idea = result.data
    assert idea.status == "submitted"
    assert idea.title == "Pipeline board"
    assert idea.user_id == user.user_id
    assert (await store.get_idea(idea.id))["status"] == "submitted"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("title", "   "),
        ("title", "t" * 201),
        ("problem", "p" * 49),
        ("solution", "s" * 49),
        ("impact", "i" * 29),
    ],
)
async def test_submit_validation(ideas, user, field, value):
    result = await _submit(ideas, user, **{field: value})
    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert field.capitalize() in result.error.message


def test_validate_submission_accepts_minimums():
    assert (
        validate_submission(
            {"title": "t", "problem": "p" * 50, "solution": "s" * 50, "impact": "i" * 30}
        )
        is None
    )


async def test_get_checks_ownership(ideas, user, admin):
    idea = (await _submit(ideas, user)).data
    stranger = user.model_copy(update={"user_id": "user-2"})

    assert (await ideas.get(idea.id, user)).ok
    assert (await ideas.get(idea.id, admin)).ok
    assert (await ideas.get(idea.id, stranger)).kind == ErrorKind.UNAUTHORIZED
    assert (await ideas.get("missing")).kind == ErrorKind.NOT_FOUND


async def test_list_for_user(ideas, user, make_idea):
    await _submit(ideas, user, title="First idea")
    await make_idea(user_id="user-2", title="Someone else's")
    result = await ideas.list_for_user(user.user_id)
    assert [i.title for i in result.data] == ["First idea"]


async def test_forward_chain(ideas, user, admin, store, config):
    idea = (await _submit(ideas, user)).data
    await IdeaTransitionService(store, config).approve(idea.id, admin)

    started = await ideas.start_prd(idea.id)
    assert started.data.status == "prd_development"

    done = await ideas.complete_prototype(idea.id)
    assert done.data.status == "prototype_complete"

    # Later versions complete again without failing
    again = await ideas.complete_prototype(idea.id)
    assert again.ok
    assert again.data.status == "prototype_complete"


async def test_start_prd_requires_approval(ideas, make_idea):
    idea = await make_idea()
    result = await ideas.start_prd(idea.id)
    assert result.kind == ErrorKind.INVALID_TRANSITION


async def test_rejected_idea_cannot_advance(ideas, make_idea):
    idea = await make_idea(status="rejected")
    assert (await ideas.start_prd(idea.id)).kind == ErrorKind.INVALID_TRANSITION
    assert (await ideas.complete_prototype(idea.id)).kind == ErrorKind.INVALID_TRANSITION


async def test_advance_missing_idea(ideas):
    assert (await ideas.start_prd("missing")).kind == ErrorKind.NOT_FOUND
