"""JWT tokens identifying the caller of ideaflow operations."""

from __future__ import annotations

import logging
import time

import jwt

from ideaflow.auth.permissions import VALID_ROLES, Actor

logger = logging.getLogger(__name__)


class TokenExpiredError(Exception):
    """Raised when a JWT token has expired."""


class TokenInvalidError(Exception):
    """Raised when a JWT token is invalid."""


def create_token(user_id: str, role: str, secret: str, exp_minutes: int = 60) -> str:
    """Create a JWT token for a user."""
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role: {role}")
    now = int(time.time())
    payload = {
        "sub": user_id,
        "role": role,
        "exp": now + (exp_minutes * 60),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token: str, secret: str) -> Actor:
    """Verify a JWT token and return the actor it identifies."""
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError("Token is invalid") from e

    user_id = payload.get("sub")
    role = payload.get("role", "user")
    if not user_id or role not in VALID_ROLES:
        logger.warning("Token payload missing subject or carrying unknown role")
        raise TokenInvalidError("Token is invalid")
    return Actor(user_id=user_id, role=role)
