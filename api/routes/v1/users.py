"""
api/routes/v1/users.py -- User administration endpoints.

Routes:
  GET    /api/v1/users                         -- paginated list (admin)
  GET    /api/v1/users/{user_id}               -- one user (self or admin)
  PUT    /api/v1/users/{user_id}               -- update profile (self or admin)
  GET    /api/v1/users/{user_id}/roles         -- roles held by a user (self or admin)
  POST   /api/v1/users/{user_id}/roles/{role_id}  -- assign role (admin)
  DELETE /api/v1/users/{user_id}/roles/{role_id}  -- remove role (admin)

Only an admin may change isActive, including on their own account.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.models import PaginationMeta, RoleOut, UserListOut, UserOut, UserUpdate
from api.responses import success_response
from auth.dependencies import AuthContext, authenticate, get_auth_service, require_admin
from auth.models import User
from auth.service import AuthService
from core.errors import AuthMessages, bad_request, conflict, not_found, unauthorized

logger = logging.getLogger("gatekeeper.api")

router = APIRouter()


def _require_self_or_admin(ctx: AuthContext, user_id: int) -> None:
    if ctx.user_id != user_id and not ctx.has_any_role("admin"):
        raise unauthorized(AuthMessages.INSUFFICIENT_PERMISSIONS)


def _load_user(service: AuthService, user_id: int) -> User:
    user = service.store.get_by_id(user_id)
    if user is None:
        raise not_found(AuthMessages.USER_NOT_FOUND)
    return user


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Return one page of users, newest first."""
    items, total = service.store.list_users(page=page, limit=limit, search=search, is_active=is_active)
    payload = UserListOut(
        items=[UserOut.from_user(u) for u in items],
        pagination=PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )
    return success_response(payload, "Users retrieved successfully")


@router.get("/users/{user_id}")
def get_user(
    user_id: int,
    ctx: AuthContext = Depends(authenticate),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    _require_self_or_admin(ctx, user_id)
    return success_response(UserOut.from_user(_load_user(service, user_id)), "User retrieved successfully")


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdate,
    ctx: AuthContext = Depends(authenticate),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Apply the provided fields to a user.

    Email and username uniqueness is checked up front for a precise message;
    the UNIQUE constraints still back it.
    """
    _require_self_or_admin(ctx, user_id)
    target = _load_user(service, user_id)

    changes = body.model_dump(exclude_none=True)
    if "is_active" in changes and not ctx.has_any_role("admin"):
        raise unauthorized(AuthMessages.INSUFFICIENT_PERMISSIONS)
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
    if not changes:
        raise bad_request("No fields to update")

    if "email" in changes or "username" in changes:
        existing = service.store.find_conflicting(
            changes.get("email") or target.email,
            changes.get("username"),
            exclude_id=user_id,
        )
        if existing is not None:
            if existing.email.lower() == (changes.get("email") or target.email).lower():
                raise conflict(AuthMessages.EMAIL_ALREADY_EXISTS)
            raise conflict(AuthMessages.USERNAME_ALREADY_EXISTS)

    service.store.update_user(user_id, **changes)
    logger.info("User %s updated by %s (%s)", user_id, ctx.user_id, sorted(changes))
    return success_response(UserOut.from_user(_load_user(service, user_id)), "User updated successfully")


@router.get("/users/{user_id}/roles")
def get_user_roles(
    user_id: int,
    ctx: AuthContext = Depends(authenticate),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    _require_self_or_admin(ctx, user_id)
    _load_user(service, user_id)
    roles = service.store.get_user_roles(user_id)
    return success_response([RoleOut.from_role(r) for r in roles], "User roles retrieved successfully")


@router.post("/users/{user_id}/roles/{role_id}")
def assign_role(
    user_id: int,
    role_id: int,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    _load_user(service, user_id)
    if service.store.get_role(role_id) is None:
        raise not_found("Role not found")
    if not service.store.assign_role(user_id, role_id):
        raise conflict("User already has this role")
    logger.info("Role %s assigned to user %s by %s", role_id, user_id, ctx.user_id)
    return success_response(UserOut.from_user(_load_user(service, user_id)), "Role assigned successfully")


@router.delete("/users/{user_id}/roles/{role_id}")
def remove_role(
    user_id: int,
    role_id: int,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    _load_user(service, user_id)
    if not service.store.remove_role(user_id, role_id):
        raise not_found("User does not have this role")
    logger.info("Role %s removed from user %s by %s", role_id, user_id, ctx.user_id)
    return success_response(UserOut.from_user(_load_user(service, user_id)), "Role removed successfully")
