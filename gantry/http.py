"""HTTP primitives: request snapshot, response values and the response writer."""

from __future__ import annotations

import copy
import json
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from http.cookies import SimpleCookie
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel

from .exceptions import BadRequestException, ResponseCommittedError, ResponseLockedError

HeaderInput = Mapping[str, "str | Iterable[str]"] | Iterable[tuple[str, str]]


class Headers(Mapping[str, str]):
    """Case-insensitive, multi-valued header mapping.

    Indexing returns the first value for a name; :meth:`getlist` returns all.
    """

    def __init__(self, raw: HeaderInput | None = None) -> None:
        self._items: list[tuple[str, str]] = []
        if raw is None:
            return
        pairs = raw.items() if isinstance(raw, Mapping) else raw
        for key, value in pairs:
            if isinstance(value, (list, tuple)):
                for item in value:
                    self._items.append((key.lower(), str(item)))
            else:
                self._items.append((key.lower(), str(value)))

    def __getitem__(self, key: str) -> str:
        key = key.lower()
        for name, value in self._items:
            if name == key:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return iter(dict.fromkeys(name for name, _ in self._items))

    def __len__(self) -> int:
        return len({name for name, _ in self._items})

    def getlist(self, key: str) -> list[str]:
        """Return every value sent for *key*."""
        key = key.lower()
        return [value for name, value in self._items if name == key]

    def raw(self) -> list[tuple[str, str]]:
        return list(self._items)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


class Request:
    """Immutable snapshot of an incoming HTTP request."""

    __slots__ = (
        "method",
        "url",
        "path",
        "query_string",
        "headers",
        "path_params",
        "query_params",
        "body",
        "_json",
        "_cookies",
    )

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        body: bytes = b"",
        headers: HeaderInput | None = None,
        path_params: Mapping[str, str] | None = None,
    ) -> None:
        parts = urlsplit(url)
        object.__setattr__(self, "method", method.upper())
        object.__setattr__(self, "url", url)
        object.__setattr__(self, "path", parts.path or "/")
        object.__setattr__(self, "query_string", parts.query)
        object.__setattr__(self, "headers", Headers(headers))
        object.__setattr__(self, "path_params", dict(path_params or {}))
        object.__setattr__(
            self,
            "query_params",
            {
                k: (v[0] if len(v) == 1 else v)
                for k, v in parse_qs(parts.query, keep_blank_values=True).items()
            },
        )
        object.__setattr__(self, "body", body)
        object.__setattr__(self, "_json", None)
        object.__setattr__(self, "_cookies", None)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Request is read-only")

    def with_path_params(self, path_params: Mapping[str, str]) -> "Request":
        """Return a copy bound to the path parameters of a matched route."""
        return Request(self.method, self.url, self.body, self.headers.raw(), path_params)

    def json(self) -> Any:
        """Return the JSON-decoded body, or ``None`` for an empty body."""
        if self._json is None and self.body:
            try:
                decoded = json.loads(self.body.decode())
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise BadRequestException(
                    "Malformed JSON body", loc=["body"], typ="json_invalid"
                ) from exc
            object.__setattr__(self, "_json", decoded)
        return self._json

    @property
    def cookies(self) -> dict[str, str]:
        """Lazily parse cookies from the request headers."""
        if self._cookies is None:
            jar: SimpleCookie = SimpleCookie()
            jar.load(self.headers.get("cookie", ""))
            object.__setattr__(self, "_cookies", {k: m.value for k, m in jar.items()})
        return self._cookies

    def __repr__(self) -> str:
        return f"Request({self.method} {self.url})"


class Response:
    """Final HTTP response value."""

    def __init__(
        self,
        content: str | bytes = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        if isinstance(content, str):
            self.body = content.encode()
            default_type = "text/plain; charset=utf-8"
        else:
            self.body = content
            default_type = "application/octet-stream"
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        if self.body or media_type:
            self.media_type = media_type or default_type
            self.headers.setdefault("content-type", self.media_type)
        else:
            self.media_type = None

    def json(self) -> Any:
        return json.loads(self.body.decode()) if self.body else None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def with_defaults(self, headers: Mapping[str, str]) -> "Response":
        """Return a copy whose headers fall back to *headers*; ``self`` is untouched."""
        clone = copy.copy(self)
        clone.headers = {k.lower(): v for k, v in headers.items()}
        clone.headers.update(self.headers)
        return clone

    def serialize(self) -> tuple[int, bytes, dict[str, str]]:
        """Return ``(status_code, body, headers)`` for transmission."""
        headers = dict(self.headers)
        headers.setdefault("content-length", str(len(self.body)))
        return self.status_code, self.body, headers

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code})"


class JSONResponse(Response):
    """Serialize content to JSON."""

    def __init__(
        self,
        content: Any,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        body = json.dumps(jsonable(content)).encode()
        super().__init__(
            body,
            status_code=status_code,
            headers=headers,
            media_type="application/json",
        )


class PlainTextResponse(Response):
    """Return plain text content."""

    def __init__(
        self,
        content: str,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            content,
            status_code=status_code,
            headers=headers,
            media_type="text/plain; charset=utf-8",
        )


class RedirectResponse(Response):
    """Redirect to a different URL."""

    def __init__(
        self,
        url: str,
        *,
        status_code: int = 307,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(b"", status_code=status_code, headers={"location": url, **(headers or {})})


def jsonable(value: Any) -> Any:
    """Convert models and dataclasses into JSON-compatible structures."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def render_result(result: Any, status_code: int) -> Response:
    """Map a handler return value to a :class:`Response`."""
    if isinstance(result, Response):
        return result
    if result is None:
        return Response(b"", status_code=status_code)
    if isinstance(result, bytes):
        return Response(result, status_code=status_code)
    if isinstance(result, str):
        return PlainTextResponse(result, status_code=status_code)
    return JSONResponse(result, status_code=status_code)


class ResponseWriter:
    """Mutable response handle shared by the stages of one request.

    Stages may set the status, headers and body until :meth:`commit` is
    called; afterwards every write raises :class:`ResponseCommittedError`.
    """

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.headers: dict[str, str] = {}
        self.body: bytes = b""
        self.committed = False
        self._locked = False
        self._final: Response | None = None

    def _check_writable(self) -> None:
        if self.committed:
            raise ResponseCommittedError("response already committed")
        if self._locked:
            raise ResponseLockedError("response is read-only in this stage")

    def set_status(self, status_code: int) -> None:
        self._check_writable()
        self.status_code = status_code

    def set_header(self, key: str, value: str) -> None:
        self._check_writable()
        self.headers[key.lower()] = value

    def write(self, data: str | bytes) -> None:
        self._check_writable()
        self.body += data.encode() if isinstance(data, str) else data

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Reject writes for the duration of the block."""
        self._locked = True
        try:
            yield
        finally:
            self._locked = False

    def to_response(self) -> Response:
        """Build a response from what stages wrote so far."""
        return Response(self.body, status_code=self.status_code or 200, headers=self.headers)

    def commit(self, response: Response | None = None) -> Response:
        """Freeze the response; headers written by stages are merged in.

        A given *response* is copied, never modified, so handler results that
        outlive the request (cached values) keep their own headers.
        """
        if self.committed:
            raise ResponseCommittedError("response already committed")
        if response is None:
            final = self.to_response()
        else:
            final = response.with_defaults(self.headers)
        self.committed = True
        self._final = final
        return final

    @property
    def final(self) -> Response | None:
        return self._final


__all__ = [
    "Headers",
    "JSONResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "Request",
    "Response",
    "ResponseWriter",
    "jsonable",
    "render_result",
]
