"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from arcade.core.errors import (
    AppError,
    CreditError,
    PaymentServiceError,
    RateLimitError,
    app_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from arcade.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/conflict")
    async def conflict():
        raise CreditError("Credit balance changed concurrently, please retry", 409)

    @app.get("/payment")
    async def payment():
        raise PaymentServiceError("Stripe is not configured")

    @app.get("/limited")
    async def limited():
        raise RateLimitError("slow down", retry_after=12)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return app


def test_credit_error_has_standard_shape():
    client = TestClient(_make_app())
    resp = client.get("/conflict")

    assert resp.status_code == 409
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "conflict"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == "Credit balance changed concurrently, please retry"


def test_credit_error_codes_by_status():
    assert CreditError("x", 402).code == "insufficient_credits"
    assert CreditError("x", 403).code == "invalid_continue_token"
    assert CreditError("x", 404).code == "no_save"
    assert CreditError("x", 409).retryable
    assert not CreditError("x", 402).retryable


def test_payment_error_defaults_to_503():
    client = TestClient(_make_app())
    resp = client.get("/payment")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "payment_error"


def test_rate_limit_error_sets_retry_after():
    client = TestClient(_make_app())
    resp = client.get("/limited")
    assert resp.status_code == 429
    assert resp.headers.get("Retry-After") == "12"
    assert resp.json()["error"]["code"] == "rate_limited"


def test_unhandled_error_hides_details():
    client = TestClient(_make_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "secret internals" not in resp.text
