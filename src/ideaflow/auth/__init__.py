"""Caller identity and role checks."""

from ideaflow.auth.jwt import TokenExpiredError, TokenInvalidError, create_token, verify_token
from ideaflow.auth.permissions import Actor, can_access, can_review, can_submit

__all__ = [
    "Actor",
    "TokenExpiredError",
    "TokenInvalidError",
    "can_access",
    "can_review",
    "can_submit",
    "create_token",
    "verify_token",
]
