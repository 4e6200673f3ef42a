import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from texttools.core.logging import get_request_id
from texttools.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/usage")
    async def usage(request: Request):
        return {
            "state_rid": getattr(request.state, "request_id", None),
            "context_rid": get_request_id(),
        }

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/usage")

    rid = resp.headers.get("x-request-id")
    assert resp.status_code == 200
    assert rid
    assert resp.json() == {"state_rid": rid, "context_rid": rid}


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    resp = client.get("/usage", headers={"X-Request-Id": "cron-reset-42"})

    assert resp.headers.get("x-request-id") == "cron-reset-42"
    assert resp.json()["context_rid"] == "cron-reset-42"


def test_each_request_gets_its_own_id():
    client = TestClient(_make_app())

    first = client.get("/usage").headers["x-request-id"]
    second = client.get("/usage").headers["x-request-id"]

    assert first != second


def test_completion_log_carries_path_and_status(caplog):
    client = TestClient(_make_app())

    with caplog.at_level(logging.INFO, logger="texttools"):
        resp = client.get("/usage")

    records = [r for r in caplog.records if r.getMessage() == "request.complete"]
    assert records
    assert records[-1].request_id == resp.headers["x-request-id"]
    assert records[-1].path == "/usage"
    assert records[-1].status == 200
