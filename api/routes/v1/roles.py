"""
api/routes/v1/roles.py -- Role catalogue endpoints. Every route requires admin.

Routes:
  GET    /api/v1/roles
  GET    /api/v1/roles/{role_id}
  POST   /api/v1/roles              -- 201; 409 on duplicate name
  PUT    /api/v1/roles/{role_id}
  DELETE /api/v1/roles/{role_id}    -- 400 for system roles
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import RoleCreate, RoleOut, RoleUpdate
from api.responses import success_response
from auth.dependencies import AuthContext, get_auth_service, require_admin
from auth.models import Role
from auth.service import AuthService
from core.errors import bad_request, conflict, not_found

logger = logging.getLogger("gatekeeper.api")

router = APIRouter()

_ROLE_EXISTS = "Role name already exists"


def _load_role(service: AuthService, role_id: int) -> Role:
    role = service.store.get_role(role_id)
    if role is None:
        raise not_found("Role not found")
    return role


@router.get("/roles")
def list_roles(
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    roles = service.store.list_roles()
    return success_response([RoleOut.from_role(r) for r in roles], "Roles retrieved successfully")


@router.get("/roles/{role_id}")
def get_role(
    role_id: int,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return success_response(RoleOut.from_role(_load_role(service, role_id)), "Role retrieved successfully")


@router.post("/roles", status_code=201)
def create_role(
    body: RoleCreate,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    if service.store.get_role_by_name(body.name) is not None:
        raise conflict(_ROLE_EXISTS)
    role = Role(
        name=body.name,
        display_name=body.display_name,
        description=body.description,
        permissions=body.permissions,
    )
    try:
        role_id = service.store.create_role(role)
    except IntegrityError as exc:
        raise conflict(_ROLE_EXISTS) from exc
    logger.info("Role %s (%s) created by %s", role_id, body.name, ctx.user_id)
    return success_response(RoleOut.from_role(_load_role(service, role_id)), "Role created successfully", 201)


@router.put("/roles/{role_id}")
def update_role(
    role_id: int,
    body: RoleUpdate,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    role = _load_role(service, role_id)
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise bad_request("No fields to update")
    if "name" in changes and changes["name"] != role.name:
        if role.is_system:
            raise bad_request("System roles cannot be renamed")
        if service.store.get_role_by_name(changes["name"]) is not None:
            raise conflict(_ROLE_EXISTS)
    try:
        service.store.update_role(role_id, **changes)
    except IntegrityError as exc:
        raise conflict(_ROLE_EXISTS) from exc
    logger.info("Role %s updated by %s (%s)", role_id, ctx.user_id, sorted(changes))
    return success_response(RoleOut.from_role(_load_role(service, role_id)), "Role updated successfully")


@router.delete("/roles/{role_id}")
def delete_role(
    role_id: int,
    ctx: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    role = _load_role(service, role_id)
    if role.is_system:
        raise bad_request("System roles cannot be deleted")
    service.store.delete_role(role_id)
    logger.info("Role %s (%s) deleted by %s", role_id, role.name, ctx.user_id)
    return success_response(None, "Role deleted successfully")
