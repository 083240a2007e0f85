"""Tests for the built-in middleware."""

import json
import logging

from gantry import (
    CORSMiddleware,
    GantryApp,
    JSONBodyMiddleware,
    LoggerMiddleware,
    RequestIdMiddleware,
    SecurityHeadersMiddleware,
    TestClient,
    TrustedHostMiddleware,
)


def test_request_id_is_generated_or_reused(app: GantryApp) -> None:
    app.use_middleware(RequestIdMiddleware())

    @app.get("/")
    def index(context) -> dict:
        return {"id": context.state.request_id}

    client = TestClient(app)
    generated = client.get("/")
    assert len(generated.headers["x-request-id"]) == 32
    assert generated.json()["id"] == generated.headers["x-request-id"]
    reused = client.get("/", headers={"X-Request-ID": "abc-123"})
    assert reused.headers["x-request-id"] == "abc-123"


def test_cors_headers_and_preflight(app: GantryApp) -> None:
    app.use_middleware(CORSMiddleware(allow_origin="https://example.com", allow_credentials=True))
    handled: list[str] = []

    @app.get("/data")
    def data() -> dict:
        handled.append("get")
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/data")
    assert response.headers["access-control-allow-origin"] == "https://example.com"
    assert response.headers["access-control-allow-credentials"] == "true"

    preflight = client.options(
        "/data",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
    )
    assert preflight.status_code == 204
    assert preflight.headers["access-control-allow-methods"] == "*"
    assert preflight.headers["access-control-max-age"] == "600"
    assert handled == ["get"]


def test_security_headers(app: GantryApp) -> None:
    app.use_middleware(SecurityHeadersMiddleware())

    @app.get("/")
    def index() -> str:
        return "ok"

    response = TestClient(app).get("/")
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"


def test_trusted_host(app: GantryApp) -> None:
    app.use_middleware(TrustedHostMiddleware(["api.example.com"]))

    @app.get("/")
    def index() -> str:
        return "ok"

    client = TestClient(app)
    assert client.get("/", headers={"Host": "api.example.com:8443"}).status_code == 200
    rejected = client.get("/", headers={"Host": "evil.test"})
    assert rejected.status_code == 400
    assert rejected.json() == {"detail": "Invalid host header"}


def test_json_body_middleware(app: GantryApp) -> None:
    app.use_middleware(JSONBodyMiddleware())

    @app.post("/echo")
    def echo(context) -> dict:
        return {"body": context.state.body}

    client = TestClient(app)
    assert client.post("/echo", json_body={"a": [1, 2]}).json() == {"body": {"a": [1, 2]}}
    broken = client.request(
        "POST", "/echo", body=b"{", headers={"Content-Type": "application/json"}
    )
    assert broken.status_code == 400
    assert broken.json()["message"] == "Malformed JSON body"


def test_logger_middleware_writes_json_line(app: GantryApp, caplog) -> None:
    app.use_middleware(RequestIdMiddleware(), LoggerMiddleware())

    @app.get("/users/{user_id}")
    def user(user_id: str) -> dict:
        return {}

    with caplog.at_level(logging.INFO, logger="gantry.request"):
        TestClient(app).get("/users/3", headers={"x-request-id": "r-9"})

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "gantry.request"]
    assert lines == [
        {
            "event": "request.received",
            "method": "GET",
            "path": "/users/3",
            "route": "/users/{user_id}",
            "request_id": "r-9",
        }
    ]
