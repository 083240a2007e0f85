"""Exception filter selection and the default error body."""

import logging

from gantry import (
    ConflictException,
    ExceptionFilter,
    GantryApp,
    HTTPException,
    HttpExceptionFilter,
    JSONResponse,
    NotFoundException,
    RequestIdMiddleware,
    Router,
    TestClient,
    catch,
)


class ScopeFilter(ExceptionFilter):
    def __init__(self, scope: str, *types) -> None:
        self.scope = scope
        self.catches = tuple(types)

    def catch(self, error, context):
        return JSONResponse({"scope": self.scope}, status_code=getattr(error, "status_code", 500))


def test_route_filter_beats_global_filter(app: GantryApp) -> None:
    app.use_filters(ScopeFilter("global", HTTPException))

    @app.get("/missing", filters=[ScopeFilter("route", NotFoundException)])
    def missing() -> None:
        raise NotFoundException()

    @app.get("/conflict", filters=[ScopeFilter("route", NotFoundException)])
    def conflict() -> None:
        raise ConflictException()

    client = TestClient(app)
    assert client.get("/missing").json() == {"scope": "route"}
    response = client.get("/conflict")
    assert response.status_code == 409
    assert response.json() == {"scope": "global"}


def test_group_filters_sit_between_route_and_global(app: GantryApp) -> None:
    router = Router("/g")
    app.use_filters(ScopeFilter("global"))
    router.use_filters(ScopeFilter("group", HTTPException))

    @router.get("/x", filters=[ScopeFilter("route", ConflictException)])
    def x() -> None:
        raise NotFoundException()

    @router.get("/y")
    def y() -> None:
        raise KeyError("y")

    app.include_router(router)
    client = TestClient(app)
    assert client.get("/g/x").json() == {"scope": "group"}
    assert client.get("/g/y").json() == {"scope": "global"}


def test_latest_registered_filter_wins_within_scope(app: GantryApp) -> None:
    app.use_filters(ScopeFilter("first"), ScopeFilter("second"))

    @app.get("/")
    def index() -> None:
        raise ConflictException()

    assert TestClient(app).get("/").json() == {"scope": "second"}


def test_function_filter_may_return_plain_value(app: GantryApp) -> None:
    @catch(ConflictException)
    def conflict_filter(error, context):
        return {"conflict": error.detail}

    app.use_filters(conflict_filter)

    @app.put("/docs/{doc_id}")
    def update(doc_id: str) -> None:
        raise ConflictException(f"{doc_id} was modified")

    response = TestClient(app).put("/docs/7")
    assert response.status_code == 409
    assert response.json() == {"conflict": "7 was modified"}


def test_failing_filter_falls_back_to_default(app: GantryApp, caplog) -> None:
    class Broken(ExceptionFilter):
        def catch(self, error, context):
            raise RuntimeError("filter bug")

    app.use_filters(Broken())

    @app.get("/")
    def index() -> None:
        raise ConflictException("taken")

    with caplog.at_level(logging.ERROR, logger="gantry.filters"):
        response = TestClient(app).get("/")
    assert response.status_code == 409
    body = response.json()
    assert body["statusCode"] == 409
    assert body["message"] == "taken"
    assert any('"event":"filter.failed"' in r.getMessage() for r in caplog.records)


def test_unknown_error_is_generic_500(app: GantryApp, caplog) -> None:
    @app.get("/crash")
    def crash() -> None:
        raise ZeroDivisionError("secret internals")

    with caplog.at_level(logging.ERROR, logger="gantry.filters"):
        response = TestClient(app).get("/crash")
    assert response.status_code == 500
    body = response.json()
    assert set(body) == {"statusCode", "timestamp", "path", "message"}
    assert body["message"] == "Internal server error"
    assert "secret internals" not in response.text
    error_records = [r for r in caplog.records if r.name == "gantry.filters"]
    assert error_records and error_records[0].exc_info is not None


def test_http_exception_filter_only_catches_http_errors(app: GantryApp) -> None:
    class Marker(HttpExceptionFilter):
        def catch(self, error, context):
            response = super().catch(error, context)
            response.headers["x-filtered"] = "http"
            return response

    app.use_filters(Marker())

    @app.get("/http")
    def http_error() -> None:
        raise NotFoundException("gone")

    @app.get("/other")
    def other_error() -> None:
        raise LookupError("x")

    client = TestClient(app)
    assert client.get("/http").headers["x-filtered"] == "http"
    assert "x-filtered" not in client.get("/other").headers


def test_unmatched_route_is_404_through_global_stages(app: GantryApp) -> None:
    route_filter_calls: list[str] = []
    app.use_middleware(RequestIdMiddleware())

    def route_filter(error, context):
        route_filter_calls.append("route")
        return {}

    @app.get("/known", filters=[route_filter])
    def known() -> str:
        return "here"

    response = TestClient(app).get("/unknown", headers={"x-request-id": "req-1"})
    assert response.status_code == 404
    assert response.headers["x-request-id"] == "req-1"
    body = response.json()
    assert body["message"] == "Not Found"
    assert body["path"] == "/unknown"
    assert route_filter_calls == []


def test_wrong_method_is_405_with_allow_header(app: GantryApp) -> None:
    @app.get("/things")
    def list_things() -> list:
        return []

    @app.put("/things")
    def replace_things() -> list:
        return []

    app.use_filters(ScopeFilter("global", NotFoundException))
    response = TestClient(app).post("/things")
    assert response.status_code == 405
    assert response.headers["allow"] == "GET, PUT"
    assert response.json()["message"] == "Method Not Allowed"


def test_filter_with_failing_matches_falls_back_to_default(app: GantryApp, caplog) -> None:
    class Picky(ExceptionFilter):
        def matches(self, error):
            raise KeyError("oops")

        def catch(self, error, context):
            return {"picky": True}

    app.use_filters(Picky())

    @app.get("/")
    def index() -> None:
        raise ConflictException("taken")

    @app.get("/crash")
    def crash() -> None:
        raise ValueError("hidden")

    client = TestClient(app)
    with caplog.at_level(logging.ERROR, logger="gantry.filters"):
        response = client.get("/")
        crashed = client.get("/crash")
    assert response.status_code == 409
    assert response.json()["message"] == "taken"
    assert crashed.status_code == 500
    assert crashed.json()["message"] == "Internal server error"
    assert any('"event":"filter.failed"' in r.getMessage() for r in caplog.records)
