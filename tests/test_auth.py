"""Tests for JWT authentication and role checks."""

from __future__ import annotations

import time

import jwt as pyjwt
import pytest

from ideaflow.auth.jwt import TokenExpiredError, TokenInvalidError, create_token, verify_token
from ideaflow.auth.permissions import Actor, can_access, can_review, can_submit, check_permission

SECRET = "test-secret-key-do-not-use"


class TestJWT:
    """Token creation and validation."""

    def test_round_trip(self) -> None:
        token = create_token("user-123", "admin", SECRET, exp_minutes=1)
        actor = verify_token(token, SECRET)
        assert actor == Actor(user_id="user-123", role="admin")

    def test_custom_expiry(self) -> None:
        token = create_token("user-789", "user", SECRET, exp_minutes=120)
        payload = pyjwt.decode(token, SECRET, algorithms=["HS256"])
        assert payload["exp"] > int(time.time()) + 3600

    def test_expired(self) -> None:
        token = create_token("user-123", "user", SECRET, exp_minutes=-1)
        with pytest.raises(TokenExpiredError):
            verify_token(token, SECRET)

    def test_wrong_secret(self) -> None:
        token = create_token("user-123", "user", SECRET)
        with pytest.raises(TokenInvalidError):
            verify_token(token, "wrong-secret")

    def test_malformed(self) -> None:
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.token", SECRET)

    def test_unknown_role_in_payload(self) -> None:
        token = pyjwt.encode(
            {"sub": "user-1", "role": "superuser", "exp": int(time.time()) + 60},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalidError):
            verify_token(token, SECRET)

    def test_missing_subject(self) -> None:
        token = pyjwt.encode(
            {"role": "user", "exp": int(time.time()) + 60}, SECRET, algorithm="HS256"
        )
        with pytest.raises(TokenInvalidError):
            verify_token(token, SECRET)

    def test_create_rejects_unknown_role(self) -> None:
        with pytest.raises(ValueError):
            create_token("user-1", "owner", SECRET)


class TestPermissions:
    """Role hierarchy: admin > user."""

    def test_hierarchy(self) -> None:
        assert check_permission("admin", "user")
        assert check_permission("admin", "admin")
        assert check_permission("user", "user")
        assert not check_permission("user", "admin")

    def test_unknown_roles(self) -> None:
        assert not check_permission("guest", "user")
        assert not check_permission("admin", "guest")

    def test_review_and_submit(self) -> None:
        assert can_review("admin")
        assert not can_review("user")
        assert can_submit("user")
        assert can_submit("admin")

    def test_access(self) -> None:
        owner = Actor(user_id="u1")
        other = Actor(user_id="u2")
        admin = Actor(user_id="a1", role="admin")
        assert can_access(owner, "u1")
        assert not can_access(other, "u1")
        assert can_access(admin, "u1")
        assert admin.is_admin
        assert not owner.is_admin
