"""
api/main.py -- FastAPI application entry point for Gatekeeper.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one INFO line per request with latency
  2. security_headers      -- nosniff, frame DENY, referrer policy
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the AuthService once from Settings and starts the session
sweep task; shutdown cancels the task and disposes the engine.

Every error leaves through the exception handlers at the bottom of this file,
which render the uniform envelope from api/responses.py.
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.responses import api_error_response, error_response, success_response
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.dependencies import AuthContext, optional_auth
from auth.service import AuthService
from core.config import get_settings
from core.errors import ApiError, ErrorKind

VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatekeeper.api")

# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired and revoked sessions every interval_seconds.

    The sweep itself is blocking SQL, so it runs in a worker thread. A failed
    sweep is logged and retried on the next tick; CancelledError from
    task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.auth_service.sweep_sessions)
        except Exception:
            logger.exception("Session sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the AuthService on startup and tear it down on shutdown.

    Startup order:
      1. AuthService -- opens the store and creates tables.
      2. Sweep task  -- references app.state.auth_service, so it comes last.
    """
    logger.info("Gatekeeper API starting up (environment=%s)", settings.environment)
    app.state.started_at = time.monotonic()
    app.state.auth_service = AuthService.from_settings(settings)
    logger.info("Auth service initialized")

    app.state.sweep_task = None
    if settings.session_sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task
    app.state.auth_service.close()
    logger.info("Gatekeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatekeeper API",
    description="JWT authentication, refresh-token sessions and role-based authorization.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware() both wrap the current stack, so the
# LAST registration is the OUTERMOST layer. Registration below runs innermost
# first: SlowAPI -> CORS -> TrustedHost -> security headers -> request log.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
app.include_router(users_router, prefix=settings.api_prefix, tags=["Users"])
app.include_router(roles_router, prefix=settings.api_prefix, tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers -- the centralized error responder
#
# Domain code raises ApiError and never catches it; these handlers are the
# only place errors become HTTP responses.
# ---------------------------------------------------------------------------


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return api_error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with per-field details when a body, path or query fails validation."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response("Validation failed", ErrorKind.VALIDATION.code, ErrorKind.VALIDATION.http_status, details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Map router-level HTTP errors (unknown route, wrong method) onto the envelope."""
    if exc.status_code == 404:
        kind = ErrorKind.ROUTE_NOT_FOUND
        message = f"Route {request.method} {request.url.path} not found"
    elif exc.status_code == 405:
        kind = ErrorKind.METHOD_NOT_ALLOWED
        message = f"Method {request.method} not allowed for {request.url.path}"
    elif exc.status_code == 401:
        kind = ErrorKind.UNAUTHORIZED
        message = str(exc.detail)
    else:
        return error_response(str(exc.detail), ErrorKind.BAD_REQUEST.code, exc.status_code, headers=exc.headers)
    return error_response(message, kind.code, kind.http_status, headers=exc.headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return error_response(
        "Too many requests, please try again later",
        ErrorKind.RATE_LIMITED.code,
        ErrorKind.RATE_LIMITED.http_status,
        details={"limit": str(exc.detail)},
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception type, message and traceback reach the client only in debug
    mode. In production they are written to the log and nothing else.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    details = None
    if settings.debug:
        details = {
            "type": type(exc).__name__,
            "message": str(exc),
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return error_response(
        ErrorKind.INTERNAL.default_message,
        ErrorKind.INTERNAL.code,
        ErrorKind.INTERNAL.http_status,
        details,
    )


# ---------------------------------------------------------------------------
# Health and API root
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness, uptime, environment and a database round-trip check."""
    try:
        database = "ok" if request.app.state.auth_service.store.ping() else "error"
    except Exception:
        logger.warning("Health check database ping failed", exc_info=True)
        database = "error"
    started_at = getattr(request.app.state, "started_at", time.monotonic())
    data = {
        "status": "healthy" if database == "ok" else "degraded",
        "version": VERSION,
        "uptime": round(time.monotonic() - started_at, 3),
        "environment": settings.environment,
        "components": {"app": "ok", "database": database},
    }
    if database != "ok":
        return error_response("Server is degraded", "SERVICE_UNAVAILABLE", status_code=503, details=data)
    return success_response(data, "Server is healthy")


@app.get(f"{settings.api_prefix}/", tags=["Health"])
def api_root(ctx: AuthContext | None = Depends(optional_auth)) -> JSONResponse:
    """List the endpoint groups this API exposes.

    A valid bearer token is optional; when present the caller is echoed back.
    """
    prefix = settings.api_prefix
    data = {
        "name": app.title,
        "version": VERSION,
        "endpoints": {
            "auth": f"{prefix}/auth",
            "users": f"{prefix}/users",
            "roles": f"{prefix}/roles",
            "health": "/health",
        },
        "authenticatedAs": ctx.user.email if ctx is not None else None,
    }
    return success_response(data, "Gatekeeper API")
