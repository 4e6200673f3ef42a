"""Tests for normalized error responses."""

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from texttools.core.errors import (
    AppError,
    QuotaExceededError,
    SubscriptionInactiveError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from texttools.core.middleware.request_id import RequestIdMiddleware
from texttools.main import app


def test_validation_error_has_standard_shape():
    client = TestClient(app)
    resp = client.post("/api/update-usage", json={"userId": "u1", "type": "invalid"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_unauthorized_error_normalized():
    client = TestClient(app)
    resp = client.post("/api/reset-usage", json={"apiKey": "guess"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_error_classes_map_to_status_codes():
    assert ValidationError("x").status_code == 400
    assert UnauthorizedError("x").status_code == 401
    assert QuotaExceededError("x").status_code == 403
    assert SubscriptionInactiveError("x").status_code == 403
    assert UpstreamError("x").status_code == 500
    assert UpstreamError("x", status_code=503, code="gate_unavailable").code == "gate_unavailable"


def _make_app():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(HTTPException, http_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/quota")
    async def quota():
        raise QuotaExceededError("You have reached the detection limit for the free plan. Please upgrade to continue.")

    @test_app.get("/missing")
    async def missing():
        raise HTTPException(status_code=404, detail="Subscription not found")

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return test_app


def test_quota_error_payload():
    client = TestClient(_make_app())
    resp = client.get("/quota")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "quota_exceeded"
    assert resp.headers.get("x-request-id")


def test_http_exception_normalized():
    client = TestClient(_make_app())
    resp = client.get("/missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    assert resp.json()["detail"] == "Subscription not found"


def test_unhandled_exception_hides_details():
    client = TestClient(_make_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "secret" not in body["detail"]
