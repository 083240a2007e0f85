"""Simple in-memory HTTP client for GantryApp."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

from .app import GantryApp


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Mapping[str, str]
    content: bytes

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


class TestClient:
    """Execute requests against a ``GantryApp`` without a server.

    Every call runs the app's async dispatch to completion on a fresh event
    loop, so tests stay synchronous.
    """

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(self, app: GantryApp) -> None:
        self.app = app

    def __enter__(self) -> "TestClient":
        asyncio.run(self.app.startup())
        return self

    def __exit__(self, *exc_info: Any) -> None:
        asyncio.run(self.app.shutdown())

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send an HTTP request and return the response."""
        if body is not None and json_body is not None:
            raise ValueError("provide either json_body or body")
        request_headers = dict(headers or {})
        if json_body is not None:
            body = json.dumps(json_body).encode()
            request_headers.setdefault("content-type", "application/json")
        url = path
        if params:
            url = f"{path}{'&' if '?' in path else '?'}{urlencode(params, doseq=True)}"
        result = asyncio.run(
            self.app.dispatch(method, url, request_headers, body or b"")
        )
        content = result.body
        try:
            text = content.decode()
        except UnicodeDecodeError:
            text = content.decode("latin1")
        return Response(result.status_code, text, dict(result.headers), content)

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a GET request."""
        return self.request("GET", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a POST request."""
        return self.request(
            "POST", path, json_body=json_body, params=params, headers=headers
        )

    def put(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request(
            "PUT", path, json_body=json_body, params=params, headers=headers
        )

    def patch(
        self,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request(
            "PATCH", path, json_body=json_body, params=params, headers=headers
        )

    def delete(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request("DELETE", path, params=params, headers=headers)

    def options(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return self.request("OPTIONS", path, headers=headers)


__all__ = ["Response", "TestClient"]
