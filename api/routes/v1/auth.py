"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create account; 201 user + tokens
  POST /api/v1/auth/login             -- password login; 200 user + tokens
  POST /api/v1/auth/refresh           -- rotate refresh token; 200 user + new tokens
  POST /api/v1/auth/logout            -- revoke the session of a refresh token (requires auth)
  POST /api/v1/auth/change-password   -- new password, all sessions revoked (requires auth)
  GET  /api/v1/auth/me                -- current user profile (requires auth)

Security:
  POST /login and POST /register are rate-limited per client IP.
  Cache-Control: no-store on every response that carries tokens.
  Refresh tokens are read from JSON bodies only, never from headers.

Handlers are plain `def`: AuthService does blocking DB and bcrypt work, so
FastAPI runs these in its threadpool.
"""

# No `from __future__ import annotations` here: FastAPI resolves string
# annotations against the endpoint's __globals__, which for a slowapi-wrapped
# endpoint belong to slowapi.
import logging

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    AuthOut,
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    ProfileOut,
    RefreshTokenRequest,
    RegisterRequest,
    TokensOut,
    UserOut,
)
from api.responses import success_response
from auth.dependencies import AuthContext, authenticate, get_auth_service
from auth.models import AuthResult
from auth.service import AuthService

logger = logging.getLogger("gatekeeper.api")

# Auth policy:
# - POST /auth/register:         public
# - POST /auth/login:            public
# - POST /auth/refresh:          public -- the refresh token itself is the credential
# - POST /auth/logout:           requires auth (authenticate)
# - POST /auth/change-password:  requires auth (authenticate)
# - GET  /auth/me:               requires auth (authenticate)
router = APIRouter()


def _auth_response(result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    payload = AuthOut(
        user=UserOut.from_user(result.user),
        tokens=TokensOut(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            expires_in=result.tokens.expires_in,
        ),
    )
    resp = success_response(payload, message, status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(register_limit)  # must be BELOW @router so the registered endpoint is the limited wrapper
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account and open its first session."""
    result = service.register(
        email=body.email,
        password=body.password,
        username=body.username,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _auth_response(result, "Registration successful", status_code=201)


@router.post("/auth/login")
@limiter.limit(login_limit)  # brute-force mitigation
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the same 401 message.
    """
    result = service.login(body.email, body.password, remember_me=body.remember_me)
    return _auth_response(result, "Login successful")


@router.post("/auth/refresh")
def refresh(
    body: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent."""
    result = service.refresh_token(body.refresh_token)
    return _auth_response(result, "Token refreshed successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(
    body: LogoutRequest | None = Body(default=None),
    ctx: AuthContext = Depends(authenticate),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the session identified by the body's refreshToken, if any.

    Without a refreshToken, or with one that matches nothing, this still
    succeeds: logout is idempotent.
    """
    if body is not None and body.refresh_token:
        service.logout(body.refresh_token)
    logger.info("Logout request handled for user: %s", ctx.user_id)
    return success_response(None, "Logout successful")


@router.post("/auth/change-password")
def change_password(
    body: ChangePasswordRequest,
    ctx: AuthContext = Depends(authenticate),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the caller's password. Every existing session is revoked."""
    service.change_password(ctx.user_id, body.current_password, body.new_password)
    return success_response(None, "Password changed successfully")


@router.get("/auth/me")
def me(ctx: AuthContext = Depends(authenticate)) -> JSONResponse:
    """Return the authenticated user's profile and merged permissions."""
    return success_response(ProfileOut.from_user(ctx.user), "Profile retrieved successfully")
