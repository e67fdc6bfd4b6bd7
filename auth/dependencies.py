"""
auth/dependencies.py -- FastAPI Depends() helpers: authenticate, authorize,
optional_auth.

Each stage returns an explicit AuthContext value instead of mutating the
request. Routes declare what they need:

    @router.get("/auth/me")
    def me(ctx: AuthContext = Depends(authenticate)): ...

    @router.get("/roles")
    def roles(ctx: AuthContext = Depends(authorize("admin"))): ...

    @app.get(f"{settings.api_prefix}/")
    def api_root(ctx: AuthContext | None = Depends(optional_auth)): ...

authenticate never handles errors itself: the ApiError raised by the header
check or by AuthService.verify_token() propagates to the centralized responder
in api/main.py.

Only the Authorization: Bearer header is accepted. Refresh tokens travel in
request bodies and are never read from headers.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from auth.models import User, user_has_any_role
from auth.service import AuthService
from core.errors import ApiError, AuthMessages, unauthorized

logger = logging.getLogger("gatekeeper.auth")

_BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthContext:
    """Identity produced by authenticate() and consumed by later stages."""

    user: User
    access_token: str

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role_names(self) -> list[str]:
        return self.user.role_names

    def has_any_role(self, *role_names: str) -> bool:
        return user_has_any_role(self.user, role_names)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from `Authorization: Bearer <token>`, or None if absent/malformed."""
    header = request.headers.get("Authorization", "")
    if not header.startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def authenticate(request: Request) -> AuthContext:
    """Require a valid bearer access token.

    Raises ApiError(UNAUTHORIZED) for a missing/malformed header or invalid
    token, ApiError(TOKEN_EXPIRED) for an expired one.
    """
    token = extract_bearer_token(request)
    if token is None:
        raise unauthorized(AuthMessages.UNAUTHORIZED)
    user = get_auth_service(request).verify_token(token)
    return AuthContext(user=user, access_token=token)


def authorize(*required_roles: str):
    """Build a dependency that requires authentication plus ANY of required_roles.

    The returned callable runs authenticate() itself, so a route needs only
    Depends(authorize("admin")).
    """
    wanted = tuple(required_roles)

    def dependency(request: Request) -> AuthContext:
        ctx = authenticate(request)
        if not ctx.has_any_role(*wanted):
            logger.info("User %s lacks any of roles %s", ctx.user_id, list(wanted))
            raise unauthorized(AuthMessages.INSUFFICIENT_PERMISSIONS)
        return ctx

    dependency.__name__ = f"authorize_{'_'.join(wanted) or 'any'}"
    return dependency


require_admin = authorize("admin")


def optional_auth(request: Request) -> AuthContext | None:
    """Attach the identity when a valid bearer token is present; otherwise None.

    Verification failures are swallowed here and only here: the request
    proceeds as anonymous.
    """
    token = extract_bearer_token(request)
    if token is None:
        return None
    try:
        user = get_auth_service(request).verify_token(token)
    except ApiError as exc:
        logger.debug("Optional auth ignored token: %s", exc.message)
        return None
    return AuthContext(user=user, access_token=token)
