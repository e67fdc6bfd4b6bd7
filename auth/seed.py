"""
auth/seed.py -- System role catalogue and idempotent database seeding.

seed_defaults() is safe to run repeatedly: existing roles, users and
assignments are left untouched and only missing rows are created.

The default accounts are development fixtures. Change or deactivate them
before exposing a deployment.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import Role, User
from auth.service import AuthService

logger = logging.getLogger("gatekeeper.seed")

SYSTEM_ROLES: tuple[Role, ...] = (
    Role(
        name="admin",
        display_name="Administrator",
        description="Full system access",
        permissions={
            "users": {"create": True, "read": True, "update": True, "delete": True},
            "system": {"admin": True, "logs": True, "settings": True},
        },
        is_system=True,
    ),
    Role(
        name="user",
        display_name="User",
        description="Basic user access",
        permissions={
            "users": {"read": False, "update": False, "delete": False},
            "system": {"admin": False, "logs": False, "settings": False},
        },
        is_system=True,
    ),
    Role(
        name="moderator",
        display_name="Moderator",
        description="Moderation privileges",
        permissions={
            "users": {"read": True, "update": True, "delete": False},
            "system": {"admin": False, "logs": True, "settings": False},
        },
        is_system=True,
    ),
)

# (email, password, username, first_name, last_name, role)
DEFAULT_USERS: tuple[tuple[str, str, str, str, str, str], ...] = (
    ("admin@example.com", "admin123!", "admin", "Admin", "User", "admin"),
    ("test@example.com", "test123!", "testuser", "Test", "User", "user"),
)


def seed_roles(service: AuthService) -> int:
    """Create any missing system role. Returns the number created."""
    created = 0
    for template in SYSTEM_ROLES:
        if service.store.get_role_by_name(template.name) is not None:
            continue
        service.store.create_role(
            Role(
                name=template.name,
                display_name=template.display_name,
                description=template.description,
                permissions=dict(template.permissions),
                is_system=True,
            )
        )
        created += 1
    return created


def seed_defaults(service: AuthService) -> dict[str, int]:
    """Seed system roles plus the default admin and test accounts."""
    roles_created = seed_roles(service)
    users_created = 0
    for email, password, username, first_name, last_name, role_name in DEFAULT_USERS:
        user = service.store.get_by_email(email)
        if user is None:
            user = service.provision_user(
                email,
                password,
                username=username,
                first_name=first_name,
                last_name=last_name,
            )
            users_created += 1
        _ensure_role(service, user, role_name)
    logger.info("Seed complete: %d role(s), %d user(s) created", roles_created, users_created)
    return {"roles": roles_created, "users": users_created}


def _ensure_role(service: AuthService, user: User, role_name: str) -> None:
    role = service.store.get_role_by_name(role_name)
    if role is None:
        raise ValueError(f"Unknown role: {role_name!r}")
    service.store.assign_role(user.id, role.id)
