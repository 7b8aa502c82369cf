"""Tests pour l'enveloppe d'erreur standard et les handlers d'exceptions."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from docdesk.apigw.errors import (
    ErrorEnvelope,
    register_error_handlers,
    rate_limited_response,
    unauthorized,
    validation_error,
)
from docdesk.core.http_constants import (
    HTTP_BAD_REQUEST,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
)


def _app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/needs-login")
    def needs_login():
        raise unauthorized()

    @app.get("/bad")
    def bad():
        raise validation_error("Required fields are missing.", {"fields": ["title"]})

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    return app


def test_envelope_to_dict() -> None:
    body = ErrorEnvelope("NOT_FOUND", "gone", trace_id="t-1", extra={"x": 1}).to_dict()

    assert body == {"error": "NOT_FOUND", "message": "gone", "traceId": "t-1", "x": 1}


def test_unauthorized_carries_login_redirect() -> None:
    r = TestClient(_app()).get("/needs-login", headers={"X-Request-ID": "req-1"})

    assert r.status_code == HTTP_UNAUTHORIZED
    assert r.json() == {
        "error": "UNAUTHORIZED",
        "message": "Login required.",
        "traceId": "req-1",
        "redirectTo": "/login",
    }


def test_validation_error_is_400_with_fields() -> None:
    r = TestClient(_app()).get("/bad")

    assert r.status_code == HTTP_BAD_REQUEST
    assert r.json()["error"] == "VALIDATION_ERROR"
    assert r.json()["fields"] == ["title"]


def test_unhandled_exception_is_wrapped() -> None:
    r = TestClient(_app(), raise_server_exceptions=False).get("/boom")

    assert r.status_code == HTTP_INTERNAL_SERVER_ERROR
    assert r.json()["error"] == "INTERNAL_ERROR"
    assert "kaboom" not in r.json()["message"]


def test_rate_limited_response_body_and_header_agree() -> None:
    response = rate_limited_response("Too many requests.", retry_after=42)

    assert response.status_code == HTTP_TOO_MANY_REQUESTS
    assert response.headers["Retry-After"] == "42"
    assert b'"retryAfter":42' in response.body
