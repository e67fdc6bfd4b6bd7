"""
API request and response models for Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (confirmPassword, rememberMe, refreshToken). Every
model inherits CamelModel, which accepts either camelCase or snake_case on
input and always emits camelCase when dumped with by_alias=True.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User, user_permissions
from auth.tokens import PASSWORD_MAX_BYTES
from core.errors import AuthMessages

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PASSWORD_MIN = 8
PASSWORD_MAX = 128


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _within_bcrypt_limit(value: str) -> str:
    # Characters are capped above; bcrypt caps the UTF-8 encoding.
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(AuthMessages.PASSWORD_TOO_LONG)
    return value


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class RegisterRequest(CamelModel):
    """Request body for POST /auth/register."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _within_bcrypt_limit(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(CamelModel):
    """Request body for POST /auth/login."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    remember_me: bool = False


class RefreshTokenRequest(CamelModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=256)


class LogoutRequest(CamelModel):
    """Optional request body for POST /auth/logout."""

    refresh_token: Optional[str] = Field(default=None, max_length=256)


class ChangePasswordRequest(CamelModel):
    """Request body for POST /auth/change-password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, value: str) -> str:
        return _within_bcrypt_limit(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


# ---------------------------------------------------------------------------
# User / role request models
# ---------------------------------------------------------------------------


class UserUpdate(CamelModel):
    """Request body for PUT /users/{id}. Only provided fields change."""

    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_active: Optional[bool] = None


class RoleCreate(CamelModel):
    """Request body for POST /roles."""

    name: str = Field(min_length=2, max_length=100)
    display_name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    permissions: dict[str, Any] = Field(default_factory=dict)


class RoleUpdate(CamelModel):
    """Request body for PUT /roles/{id}."""

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    display_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    permissions: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleSummary(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    display_name: str


class RoleOut(CamelModel):
    """Full role record for the admin roles API."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    display_name: str
    description: Optional[str]
    permissions: dict[str, Any]
    is_system: bool
    is_active: bool
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_role(cls, role: Role) -> "RoleOut":
        return cls(
            id=role.id,
            name=role.name,
            display_name=role.display_name,
            description=role.description,
            permissions=role.permissions,
            is_system=role.is_system,
            is_active=role.is_active,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class UserOut(CamelModel):
    """Public projection of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    is_active: bool
    created_at: Optional[str]
    updated_at: Optional[str]
    last_login: Optional[str]
    roles: list[RoleSummary]

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        """Factory Method: the domain-to-wire mapping lives beside the wire model."""
        return cls(**_user_fields(user))


class ProfileOut(UserOut):
    """GET /auth/me -- the user plus the merged permission map of their roles."""

    permissions: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_user(cls, user: User) -> "ProfileOut":
        return cls(**_user_fields(user), permissions=user_permissions(user))


class TokensOut(CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_in: int


class AuthOut(CamelModel):
    """Payload for register / login / refresh."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    tokens: TokensOut


class PaginationMeta(CamelModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int


class UserListOut(CamelModel):
    model_config = ConfigDict(frozen=True)

    items: list[UserOut]
    pagination: PaginationMeta


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_fields(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_active": user.is_active,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
        "last_login": user.last_login,
        "roles": [RoleSummary(id=r.id, name=r.name, display_name=r.display_name) for r in user.roles],
    }
