"""
tests/test_error_envelope.py -- The centralized error responder and response envelope.

Covers:
  - ErrorKind -> (status, code) mapping used by every ApiError
  - unknown route -> 404 ROUTE_NOT_FOUND; wrong method -> 405 METHOD_NOT_ALLOWED + Allow
  - unhandled exceptions -> 500 INTERNAL_SERVER_ERROR with debug-only details
  - security headers on every response
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.responses import error_body, success_body
from core.config import Settings, get_settings
from core.errors import (
    ApiError,
    ErrorKind,
    bad_request,
    conflict,
    internal_error,
    not_found,
    token_expired,
    validation_error,
)


class TestErrorKinds:
    @pytest.mark.parametrize(
        "kind, status, code",
        [
            (ErrorKind.VALIDATION, 422, "VALIDATION_ERROR"),
            (ErrorKind.BAD_REQUEST, 400, "BAD_REQUEST"),
            (ErrorKind.UNAUTHORIZED, 401, "UNAUTHORIZED"),
            (ErrorKind.TOKEN_EXPIRED, 401, "UNAUTHORIZED"),
            (ErrorKind.NOT_FOUND, 404, "NOT_FOUND"),
            (ErrorKind.ROUTE_NOT_FOUND, 404, "ROUTE_NOT_FOUND"),
            (ErrorKind.METHOD_NOT_ALLOWED, 405, "METHOD_NOT_ALLOWED"),
            (ErrorKind.CONFLICT, 409, "CONFLICT"),
            (ErrorKind.RATE_LIMITED, 429, "TOO_MANY_REQUESTS"),
            (ErrorKind.INTERNAL, 500, "INTERNAL_SERVER_ERROR"),
        ],
    )
    def test_kind_carries_status_and_code(self, kind: ErrorKind, status: int, code: str) -> None:
        err = ApiError(kind)
        assert err.http_status == status
        assert err.code == code
        assert err.message == kind.default_message

    def test_helpers_build_the_expected_kinds(self) -> None:
        assert bad_request().kind is ErrorKind.BAD_REQUEST
        assert not_found("gone").message == "gone"
        assert conflict().http_status == 409
        assert internal_error().code == "INTERNAL_SERVER_ERROR"
        assert validation_error(details=[{"field": "email"}]).http_status == 422
        assert token_expired().details == {"reason": "token_expired"}


class TestEnvelopeBodies:
    def test_success_body_shape(self) -> None:
        body = success_body({"a": 1}, "done")
        assert body["success"] is True
        assert body["message"] == "done"
        assert body["data"] == {"a": 1}
        assert "error" not in body

    def test_error_body_omits_absent_details(self) -> None:
        body = error_body("nope", "NOT_FOUND")
        assert body == {"success": False, "message": "nope", "error": {"code": "NOT_FOUND"}, "timestamp": body["timestamp"]}

    def test_error_body_keeps_details(self) -> None:
        assert error_body("bad", "BAD_REQUEST", {"field": "x"})["error"]["details"] == {"field": "x"}


class TestRouterErrors:
    def test_unknown_route_is_route_not_found(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/does-not-exist")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "ROUTE_NOT_FOUND"
        assert "/api/v1/does-not-exist" in body["message"]

    def test_wrong_method_is_method_not_allowed(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/auth/login")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "METHOD_NOT_ALLOWED"
        assert "POST" in resp.headers["allow"]

    def test_security_headers_present(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Referrer-Policy"] == "no-referrer"

    def test_untrusted_host_is_rejected(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/health", headers={"Host": "evil.example.net"})
        assert resp.status_code == 400

    def test_test_client_host_is_allowed_only_through_the_environment(self) -> None:
        assert "testserver" not in Settings.model_fields["allowed_hosts"].default
        assert "testserver" in get_settings().allowed_hosts


@app.get("/__test__/boom", include_in_schema=False)
def _boom() -> None:
    raise RuntimeError("kaboom")


@app.get("/__test__/api-error", include_in_schema=False)
def _api_error() -> None:
    raise not_found("Widget not found", details={"id": 7})


class TestUnhandledErrors:
    def test_unhandled_exception_is_internal_server_error(self, api_client) -> None:
        # api_client installs the test lifespan; this second client tolerates server errors.
        with TestClient(app, raise_server_exceptions=False) as client:
            resp = client.get("/__test__/boom")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"]["code"] == "INTERNAL_SERVER_ERROR"
        # DEBUG=true in the test environment, so internal detail is included.
        assert body["error"]["details"]["type"] == "RuntimeError"
        assert body["error"]["details"]["message"] == "kaboom"

    def test_api_error_raised_in_a_route_keeps_its_details(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/__test__/api-error")
        assert resp.status_code == 404
        assert resp.json()["error"] == {"code": "NOT_FOUND", "details": {"id": 7}}
        assert resp.json()["message"] == "Widget not found"
