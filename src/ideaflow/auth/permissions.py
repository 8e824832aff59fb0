"""Role checks for ideaflow operations."""

from __future__ import annotations

from pydantic import BaseModel

_ROLE_HIERARCHY = {
    "admin": 2,
    "user": 1,
}

VALID_ROLES = frozenset(_ROLE_HIERARCHY)


class Actor(BaseModel):
    """The authenticated caller of an operation."""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return can_review(self.role)


def check_permission(role: str, required_role: str) -> bool:
    """Check if a role has permission to perform an action requiring a specific role."""
    if role not in _ROLE_HIERARCHY or required_role not in _ROLE_HIERARCHY:
        return False
    return _ROLE_HIERARCHY[role] >= _ROLE_HIERARCHY[required_role]


def can_submit(role: str) -> bool:
    """Check if a role can submit ideas and work on its own prototypes."""
    return check_permission(role, "user")


def can_review(role: str) -> bool:
    """Check if a role can approve or reject ideas."""
    return check_permission(role, "admin")


def can_access(actor: Actor, owner_id: str) -> bool:
    """Owners and admins may act on an owned record."""
    return actor.user_id == owner_id or actor.is_admin
