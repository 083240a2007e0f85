"""Request snapshot, response values and the response writer."""

from dataclasses import dataclass

import pytest
from pydantic import BaseModel

from gantry.exceptions import BadRequestException, ResponseCommittedError, ResponseLockedError
from gantry.http import (
    Headers,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Request,
    Response,
    ResponseWriter,
    render_result,
)


class User(BaseModel):
    name: str


@dataclass
class Point:
    x: int
    y: int


def test_headers_are_case_insensitive_and_multi_valued() -> None:
    headers = Headers([("Accept", "text/html"), ("accept", "application/json"), ("X-A", "1")])
    assert headers["ACCEPT"] == "text/html"
    assert headers.getlist("accept") == ["text/html", "application/json"]
    assert list(headers) == ["accept", "x-a"]
    assert len(headers) == 2
    assert Headers({"X-Many": ["a", "b"]}).getlist("x-many") == ["a", "b"]


def test_request_parses_url_and_is_read_only() -> None:
    request = Request("get", "/search?q=pen&tag=a&tag=b&empty=", headers={"Cookie": "sid=abc; theme=dark"})
    assert request.method == "GET"
    assert request.path == "/search"
    assert request.query_params == {"q": "pen", "tag": ["a", "b"], "empty": ""}
    assert request.cookies == {"sid": "abc", "theme": "dark"}
    with pytest.raises(AttributeError):
        request.method = "POST"


def test_request_json() -> None:
    assert Request("POST", "/", b'{"a": 1}').json() == {"a": 1}
    assert Request("POST", "/").json() is None
    with pytest.raises(BadRequestException) as info:
        Request("POST", "/", b"{").json()
    assert info.value.errors()[0]["type"] == "json_invalid"


def test_with_path_params_copies_request() -> None:
    original = Request("GET", "/items/3", headers={"x-a": "1"})
    bound = original.with_path_params({"item_id": "3"})
    assert bound.path_params == {"item_id": "3"}
    assert original.path_params == {}
    assert bound.headers["x-a"] == "1"


def test_response_types() -> None:
    assert PlainTextResponse("hi").headers["content-type"] == "text/plain; charset=utf-8"
    json_response = JSONResponse({"user": User(name="ada"), "point": Point(1, 2)})
    assert json_response.json() == {"user": {"name": "ada"}, "point": {"x": 1, "y": 2}}
    redirect = RedirectResponse("/login")
    assert (redirect.status_code, redirect.headers["location"]) == (307, "/login")
    status, body, headers = Response(b"abc").serialize()
    assert (status, body, headers["content-length"]) == (200, b"abc", "3")
    assert "content-type" not in Response().headers


@pytest.mark.parametrize(
    ("value", "media"),
    [
        ("text", "text/plain; charset=utf-8"),
        (b"raw", "application/octet-stream"),
        ({"a": 1}, "application/json"),
        ([1, 2], "application/json"),
    ],
)
def test_render_result_media_types(value, media: str) -> None:
    response = render_result(value, 202)
    assert response.status_code == 202
    assert response.headers["content-type"] == media


def test_render_result_keeps_responses_and_empty_bodies() -> None:
    original = JSONResponse({}, status_code=418)
    assert render_result(original, 200) is original
    empty = render_result(None, 204)
    assert (empty.status_code, empty.body) == (204, b"")


def test_writer_commits_once_and_merges_headers() -> None:
    writer = ResponseWriter()
    writer.set_status(202)
    writer.set_header("X-Trace", "t1")
    writer.write("part")
    final = writer.commit(JSONResponse({"ok": True}, headers={"x-trace": "own"}))
    assert final.headers["x-trace"] == "own"
    assert writer.final is final
    with pytest.raises(ResponseCommittedError):
        writer.set_header("x-late", "1")
    with pytest.raises(ResponseCommittedError):
        writer.commit()


def test_writer_builds_response_from_writes() -> None:
    writer = ResponseWriter()
    writer.set_status(204)
    writer.set_header("x-a", "1")
    final = writer.commit()
    assert final.status_code == 204
    assert final.headers["x-a"] == "1"


def test_locked_writer_rejects_writes() -> None:
    writer = ResponseWriter()
    with writer.locked():
        with pytest.raises(ResponseLockedError):
            writer.write("nope")
    writer.write("fine")
    assert writer.body == b"fine"
