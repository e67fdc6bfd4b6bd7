"""
core/errors.py -- Error taxonomy shared by every layer.

Pattern: tagged variant. There is one exception type, ApiError, and the
ErrorKind it carries decides the HTTP status and wire code. The centralized
responder in api/main.py switches on exc.kind; it never inspects subclasses.

Domain code raises ApiError at the point of detection (usually through one of
the helper constructors below) and lets it travel unmodified to the responder.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Every failure the API can report, with (http_status, code, default message)."""

    VALIDATION = (422, "VALIDATION_ERROR", "Validation failed")
    BAD_REQUEST = (400, "BAD_REQUEST", "Bad request")
    UNAUTHORIZED = (401, "UNAUTHORIZED", "Unauthorized")
    # Same wire code as UNAUTHORIZED; clients tell them apart by details.reason.
    TOKEN_EXPIRED = (401, "UNAUTHORIZED", "Token has expired")
    NOT_FOUND = (404, "NOT_FOUND", "Resource not found")
    ROUTE_NOT_FOUND = (404, "ROUTE_NOT_FOUND", "Route not found")
    METHOD_NOT_ALLOWED = (405, "METHOD_NOT_ALLOWED", "Method not allowed")
    CONFLICT = (409, "CONFLICT", "Resource conflict")
    RATE_LIMITED = (429, "TOO_MANY_REQUESTS", "Too many requests")
    INTERNAL = (500, "INTERNAL_SERVER_ERROR", "Internal server error")

    def __init__(self, http_status: int, code: str, default_message: str) -> None:
        self.http_status = http_status
        self.code = code
        self.default_message = default_message


class AuthMessages:
    """User-facing auth failure messages.

    INVALID_CREDENTIALS is shared by "unknown email" and "wrong password" so
    login never reveals which one failed. USER_INACTIVE is deliberately
    distinct.
    """

    INVALID_CREDENTIALS = "Invalid email or password"
    USER_NOT_FOUND = "User not found"
    USER_INACTIVE = "Account is deactivated"
    INVALID_TOKEN = "Invalid or expired token"
    TOKEN_EXPIRED = "Token has expired"
    UNAUTHORIZED = "Unauthorized access"
    INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
    EMAIL_ALREADY_EXISTS = "Email already exists"
    USERNAME_ALREADY_EXISTS = "Username already exists"
    EMAIL_OR_USERNAME_EXISTS = "Email or username already exists"
    CURRENT_PASSWORD_INCORRECT = "Current password is incorrect"
    PASSWORD_TOO_LONG = "Password cannot be longer than 72 bytes"


class ApiError(Exception):
    """A domain failure destined for the client.

    Attributes:
        kind:    ErrorKind -- selects status and wire code.
        message: Human-readable message placed in the envelope.
        details: Optional JSON-serializable payload (field errors, reason).
    """

    def __init__(self, kind: ErrorKind, message: str | None = None, details: Any = None) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    @property
    def code(self) -> str:
        return self.kind.code

    def __repr__(self) -> str:
        return f"ApiError({self.kind.name}, {self.message!r})"


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def validation_error(message: str = "Validation failed", details: Any = None) -> ApiError:
    return ApiError(ErrorKind.VALIDATION, message, details)


def bad_request(message: str = "Bad request", details: Any = None) -> ApiError:
    return ApiError(ErrorKind.BAD_REQUEST, message, details)


def unauthorized(message: str = AuthMessages.UNAUTHORIZED, details: Any = None) -> ApiError:
    return ApiError(ErrorKind.UNAUTHORIZED, message, details)


def token_expired() -> ApiError:
    return ApiError(ErrorKind.TOKEN_EXPIRED, AuthMessages.TOKEN_EXPIRED, {"reason": "token_expired"})


def not_found(message: str = "Resource not found", details: Any = None) -> ApiError:
    return ApiError(ErrorKind.NOT_FOUND, message, details)


def conflict(message: str = "Resource conflict", details: Any = None) -> ApiError:
    return ApiError(ErrorKind.CONFLICT, message, details)


def internal_error(message: str = "Internal server error", details: Any = None) -> ApiError:
    return ApiError(ErrorKind.INTERNAL, message, details)
