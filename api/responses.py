"""
api/responses.py -- Builders for the uniform response envelope.

Every route and every exception handler goes through these two functions so
clients can parse any response with one schema:

    {success, message, data?, error?: {code, details?}, timestamp}

Pydantic models in `data` are dumped with camelCase aliases.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.errors import ApiError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return jsonable_encoder(data)


def success_body(data: Any = None, message: str = "Success") -> dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "data": _dump(data),
        "timestamp": _timestamp(),
    }


def error_body(message: str, code: str, details: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    return {
        "success": False,
        "message": message,
        "error": error,
        "timestamp": _timestamp(),
    }


def success_response(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=success_body(data, message))


def error_response(
    message: str,
    code: str,
    status_code: int,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(message, code, details), headers=headers)


def api_error_response(exc: ApiError) -> JSONResponse:
    return error_response(exc.message, exc.code, exc.http_status, exc.details)
