"""Built-in interceptors and the interceptor chain contract."""

import asyncio
import json
import logging

from gantry import (
    BadGatewayException,
    CacheInterceptor,
    ErrorsInterceptor,
    ExcludeNullInterceptor,
    ExecutionContext,
    Fail,
    GantryApp,
    Interceptor,
    JSONResponse,
    LoggingInterceptor,
    Request,
    RequestIdMiddleware,
    Response,
    RetryInterceptor,
    RouteConfig,
    ServiceUnavailableException,
    ShortCircuit,
    TestClient,
    TimeoutInterceptor,
    TransformInterceptor,
)
from infrastructure.configuration import Settings
from infrastructure.monitoring import get_metric


class ManualClock:
    """Deterministic monotonic timer for cache tests."""

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, delta: float) -> None:
        self.value += delta


def test_timeout_interceptor_answers_408_for_hanging_handler(app: GantryApp) -> None:
    @app.get("/hang", interceptors=[TimeoutInterceptor(0.05)])
    async def hang() -> str:
        await asyncio.Event().wait()
        return "never"

    response = TestClient(app).get("/hang")
    assert response.status_code == 408
    body = response.json()
    assert body["statusCode"] == 408
    assert body["message"] == "Request Timeout"
    assert get_metric("interceptor_timeouts_total") == 1


def test_timeout_interceptor_passes_fast_results(app: GantryApp) -> None:
    @app.get("/fast", interceptors=[TimeoutInterceptor(1.0)])
    async def fast() -> dict:
        return {"ok": True}

    response = TestClient(app).get("/fast")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert get_metric("interceptor_timeouts_total") == 0


def test_timeout_resolution_order() -> None:
    settings = Settings(environment="test", request_timeout=9.0)
    interceptor = TimeoutInterceptor(settings=settings)
    context = ExecutionContext(Request("GET", "/"))
    assert interceptor.resolve_timeout(context) == 9.0
    assert TimeoutInterceptor(3.0, settings=settings).resolve_timeout(context) == 3.0
    routed = ExecutionContext(Request("GET", "/"), config=RouteConfig(timeout=0.5))
    assert TimeoutInterceptor(3.0, settings=settings).resolve_timeout(routed) == 0.5
    assert TimeoutInterceptor().resolve_timeout(context) is None


def test_route_timeout_config_overrides_interceptor(app: GantryApp) -> None:
    app.use_interceptors(TimeoutInterceptor(30.0))

    @app.get("/slow", config=RouteConfig(timeout=0.05))
    async def slow() -> str:
        await asyncio.sleep(5)
        return "late"

    assert TestClient(app).get("/slow").status_code == 408


def test_cache_interceptor_serves_repeated_gets(app: GantryApp) -> None:
    clock = ManualClock()
    store: dict = {}
    calls = {"count": 0}
    app.use_interceptors(CacheInterceptor(store, ttl=10, timer=clock))

    @app.get("/report")
    def report(day: str = "mon") -> dict:
        calls["count"] += 1
        return {"day": day, "n": calls["count"]}

    @app.post("/report")
    def rebuild() -> dict:
        calls["count"] += 1
        return {}

    client = TestClient(app)
    first = client.get("/report")
    assert first.headers["x-cache"] == "MISS"
    second = client.get("/report")
    assert second.headers["x-cache"] == "HIT"
    assert second.json() == first.json()
    assert calls["count"] == 1

    client.get("/report", params={"day": "tue"})
    assert calls["count"] == 2

    client.post("/report")
    client.post("/report")
    assert calls["count"] == 4

    clock.advance(11)
    assert client.get("/report").json()["n"] == 5
    assert set(store) == {"/report", "/report?day=tue"}


def test_cache_ttl_from_route_config(app: GantryApp) -> None:
    clock = ManualClock()
    calls = {"count": 0}
    app.use_interceptors(CacheInterceptor(timer=clock))

    @app.get("/short", config=RouteConfig(cache_ttl=1))
    def short() -> dict:
        calls["count"] += 1
        return {}

    client = TestClient(app)
    client.get("/short")
    client.get("/short")
    clock.advance(2)
    client.get("/short")
    assert calls["count"] == 2


def test_retry_interceptor_retries_transient_errors(app: GantryApp) -> None:
    attempts = {"n": 0}
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    @app.get("/flaky", interceptors=[RetryInterceptor(3, backoff=0.1, sleep=fake_sleep)])
    def flaky() -> dict:
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise ConnectionError("reset")
        return {"attempts": attempts["n"]}

    response = TestClient(app).get("/flaky")
    assert response.status_code == 200
    assert response.json() == {"attempts": 3}
    assert delays == [0.1, 0.2]


def test_retry_interceptor_gives_up(app: GantryApp) -> None:
    attempts = {"n": 0}

    async def no_sleep(delay: float) -> None:
        return None

    @app.get("/down", interceptors=[RetryInterceptor(2, sleep=no_sleep)])
    def down() -> None:
        attempts["n"] += 1
        raise ServiceUnavailableException()

    @app.get("/bug", interceptors=[RetryInterceptor(5, sleep=no_sleep)])
    def bug() -> None:
        attempts["n"] += 1
        raise ValueError("not transient")

    client = TestClient(app)
    assert client.get("/down").status_code == 503
    assert attempts["n"] == 2
    assert client.get("/bug").status_code == 500
    assert attempts["n"] == 3


def test_transform_and_exclude_null(app: GantryApp) -> None:
    app.use_interceptors(TransformInterceptor(), ExcludeNullInterceptor())

    @app.get("/value")
    def value() -> int:
        return 5

    @app.get("/nothing")
    def nothing() -> None:
        return None

    @app.get("/raw")
    def raw() -> JSONResponse:
        return JSONResponse({"raw": True})

    client = TestClient(app)
    assert client.get("/value").json() == {"data": 5}
    assert client.get("/nothing").json() == {"data": ""}
    assert client.get("/raw").json() == {"raw": True}


def test_errors_interceptor_maps_unknown_errors(app: GantryApp) -> None:
    app.use_interceptors(ErrorsInterceptor())

    @app.get("/upstream")
    def upstream() -> None:
        raise OSError("socket closed")

    @app.get("/known")
    def known() -> None:
        raise ServiceUnavailableException()

    client = TestClient(app)
    response = client.get("/upstream")
    assert response.status_code == 502
    assert response.json()["message"] == "Bad Gateway"
    assert client.get("/known").status_code == 503


def test_errors_interceptor_custom_mapping(app: GantryApp) -> None:
    app.use_interceptors(
        ErrorsInterceptor({KeyError: lambda exc: BadGatewayException(f"missing {exc.args[0]}")})
    )

    @app.get("/lookup")
    def lookup() -> None:
        raise KeyError("user")

    @app.get("/other")
    def other() -> None:
        raise IndexError("x")

    client = TestClient(app)
    assert client.get("/lookup").json()["message"] == "missing user"
    assert client.get("/other").status_code == 500


def test_interceptor_can_skip_handler_and_return_outcomes(app: GantryApp) -> None:
    called: list[str] = []

    class Maintenance(Interceptor):
        async def around(self, context, call_next):
            if context.request.headers.get("x-maintenance"):
                return ShortCircuit(JSONResponse({"maintenance": True}, status_code=503))
            if context.request.headers.get("x-fail"):
                return Fail(ServiceUnavailableException("paused"))
            return await call_next()

    app.use_interceptors(Maintenance())

    @app.get("/")
    def index() -> str:
        called.append("handler")
        return "ok"

    client = TestClient(app)
    assert client.get("/", headers={"x-maintenance": "1"}).status_code == 503
    failed = client.get("/", headers={"x-fail": "1"})
    assert failed.status_code == 503
    assert failed.json()["message"] == "paused"
    assert called == []
    assert client.get("/").text == "ok"


def test_interceptor_can_transform_errors_into_success(app: GantryApp) -> None:
    async def fallback(context, call_next):
        try:
            return await call_next()
        except LookupError:
            return {"fallback": True}

    @app.get("/", interceptors=[fallback])
    def index() -> None:
        raise LookupError("cache miss")

    response = TestClient(app).get("/")
    assert response.status_code == 200
    assert response.json() == {"fallback": True}


def test_logging_interceptor_emits_structured_lines(app: GantryApp, caplog) -> None:
    app.use_interceptors(LoggingInterceptor())

    @app.get("/ok/{n}")
    def ok(n: str) -> dict:
        return {"n": n}

    @app.get("/fail")
    def fail() -> None:
        raise ServiceUnavailableException()

    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="gantry.pipeline"):
        client.get("/ok/1")
        assert client.get("/fail").status_code == 503

    payloads = [
        (r.levelno, json.loads(r.getMessage()))
        for r in caplog.records
        if r.name == "gantry.pipeline" and r.getMessage().startswith("{")
    ]
    handled = [p for _, p in payloads if p["event"] == "request.handled"]
    assert handled[0]["route"] == "/ok/{n}"
    assert handled[0]["status"] == 200
    assert handled[0]["method"] == "GET"
    assert "trace_id" in handled[0]
    assert "duration_ms" in handled[0]
    failure = [(lvl, p) for lvl, p in payloads if p.get("error")]
    assert failure[0][0] == logging.ERROR
    assert failure[0][1]["status"] == 503


def test_cached_response_does_not_keep_request_headers(app: GantryApp) -> None:
    app.use_middleware(RequestIdMiddleware())
    app.use_interceptors(CacheInterceptor(ttl=60, timer=ManualClock()))
    calls = {"count": 0}

    @app.get("/greeting", headers={"x-static": "1"})
    def greeting() -> Response:
        calls["count"] += 1
        return Response("hello")

    client = TestClient(app)
    first = client.get("/greeting", headers={"x-request-id": "first"})
    second = client.get("/greeting", headers={"x-request-id": "second"})
    assert first.headers["x-request-id"] == "first"
    assert first.headers["x-cache"] == "MISS"
    assert second.headers["x-request-id"] == "second"
    assert second.headers["x-cache"] == "HIT"
    assert second.headers["x-static"] == "1"
    assert second.text == "hello"
    assert calls["count"] == 1
