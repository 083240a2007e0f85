"""Minimal ASGI 3 adapter exposing a :class:`GantryApp` to ASGI servers.

Only the ``http`` and ``lifespan`` scope types are supported.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict

from .app import GantryApp

Scope = Dict[str, object]
Receive = Callable[[], Awaitable[Dict[str, object]]]
Send = Callable[[Dict[str, object]], Awaitable[None]]


class ASGIAdapter:
    """Translate ASGI events into :meth:`GantryApp.dispatch` calls."""

    def __init__(self, app: GantryApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        elif scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        else:
            raise NotImplementedError(f"Unsupported scope type {scope['type']}")

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        await receive()  # lifespan.startup
        try:
            await self.app.startup()
        except Exception as exc:
            await send({"type": "lifespan.startup.failed", "message": str(exc)})
            raise
        await send({"type": "lifespan.startup.complete"})
        await receive()  # lifespan.shutdown
        await self.app.shutdown()
        await send({"type": "lifespan.shutdown.complete"})

    @staticmethod
    async def _read_body(receive: Receive) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message.get("type") != "http.request":
                break
            chunks.append(bytes(message.get("body", b"")))  # type: ignore[arg-type]
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        method = str(scope.get("method", "GET")).upper()
        path = str(scope.get("path", "/"))
        query = scope.get("query_string", b"")
        if isinstance(query, bytes) and query:
            path = f"{path}?{query.decode('latin1')}"
        raw_headers = scope.get("headers") or []
        headers = [
            (bytes(k).decode("latin1"), bytes(v).decode("latin1"))
            for k, v in raw_headers  # type: ignore[union-attr]
        ]
        body = await self._read_body(receive)
        response = await self.app.dispatch(method, path, headers, body)
        status, content, resp_headers = response.serialize()
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(k.encode("latin1"), v.encode("latin1")) for k, v in resp_headers.items()],
            }
        )
        await send({"type": "http.response.body", "body": content})


__all__ = ["ASGIAdapter"]
