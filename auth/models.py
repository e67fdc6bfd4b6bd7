"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; the role helpers at the bottom are the only behavior
and they only read.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Role:
    """A named permission bundle assigned to users many-to-many.

    permissions is a nested map such as {"users": {"read": True}}.
    System roles are created by the seed command and cannot be deleted.
    """

    name: str
    display_name: str
    id: int | None = None
    description: str | None = None
    permissions: dict[str, Any] = field(default_factory=dict)
    is_system: bool = False
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """A registered identity.

    roles is populated by the store whenever a user is loaded for auth
    purposes; it is never written through this object. Users are deactivated
    (is_active=False), never hard-deleted by the auth flow.
    """

    email: str
    hashed_password: str
    id: int | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    roles: list[Role] = field(default_factory=list)

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]


@dataclass
class Session:
    """Durable record binding a refresh token to a user and a validity window.

    State machine: active -> rotated (same row, new token value) -> revoked.
    Nothing moves a revoked session back to active.
    """

    user_id: int
    refresh_token: str
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    user: User | None = None  # loaded by SessionLedger.find_by_token()

    def is_usable(self, now: datetime) -> bool:
        return not self.is_revoked and self.expires_at > now


@dataclass
class TokenPair:
    """Output of the token issuer. Never persisted as-is."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


@dataclass
class AuthResult:
    """What register / login / refresh hand back to the route layer."""

    user: User
    tokens: TokenPair


@dataclass
class AuditEntry:
    user_id: int | None
    action: str
    details: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Role helpers
# ---------------------------------------------------------------------------


def user_has_role(user: User, role_name: str) -> bool:
    return role_name in user.role_names


def user_has_any_role(user: User, role_names: list[str] | tuple[str, ...]) -> bool:
    """Logical OR: any one qualifying role is enough."""
    wanted = set(role_names)
    return any(name in wanted for name in user.role_names)


def user_permissions(user: User) -> dict[str, Any]:
    """Merge the permission maps of every role the user holds.

    Later roles win on key collisions at the top level, which matches how the
    permission maps are authored (one section per resource).
    """
    merged: dict[str, Any] = {}
    for role in user.roles:
        if isinstance(role.permissions, dict):
            merged.update(role.permissions)
    return merged
