"""Request middleware and the middleware chain."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
import uuid
from collections import defaultdict, deque
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Iterable

from infrastructure.configuration import Settings
from infrastructure.monitoring import increment_metric, start_span

from .context import ExecutionContext
from .http import JSONResponse, Response
from .outcome import Continue, Fail, Outcome, ShortCircuit, run_unit

_LOGGER = logging.getLogger("gantry")


class Middleware:
    """Process the request before guards run.

    ``process`` returns ``None`` or ``Continue`` to proceed, ``ShortCircuit``
    to answer immediately, and raises to hand the error to the filters.
    """

    def process(self, context: ExecutionContext) -> Outcome | None | Awaitable[Outcome | None]:
        return None

    def __repr__(self) -> str:
        return type(self).__name__


class FunctionMiddleware(Middleware):
    """Adapt a plain ``func(context)`` callable."""

    def __init__(self, func: Callable[[ExecutionContext], Any]) -> None:
        self.func = func

    def process(self, context: ExecutionContext) -> Any:
        return self.func(context)

    def __repr__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


def as_middleware(unit: Middleware | Callable[..., Any]) -> Middleware:
    if isinstance(unit, Middleware):
        return unit
    if isinstance(unit, type) and issubclass(unit, Middleware):
        return unit()
    if callable(unit):
        return FunctionMiddleware(unit)
    raise TypeError(f"{unit!r} is not a middleware")


class MiddlewareChain:
    """Run middleware in registration order until one stops the request."""

    def __init__(self, entries: Iterable[tuple[Middleware, tuple[str, ...]]]) -> None:
        self.entries: tuple[tuple[Middleware, tuple[str, ...]], ...] = tuple(entries)

    @property
    def middleware(self) -> tuple[Middleware, ...]:
        return tuple(mw for mw, _ in self.entries)

    async def run(self, context: ExecutionContext) -> Outcome:
        path = context.path
        for mw, exclude in self.entries:
            if any(fnmatchcase(path, pattern) for pattern in exclude):
                continue
            with start_span("middleware", **{"gantry.unit": repr(mw)}):
                outcome = await run_unit(mw.process, context)
            if isinstance(outcome, (ShortCircuit, Fail)):
                return outcome
        return Continue()

    def __len__(self) -> int:
        return len(self.entries)


class RequestIdMiddleware(Middleware):
    """Attach a stable request identifier to state and response headers."""

    header = "x-request-id"

    def process(self, context: ExecutionContext) -> None:
        request_id = context.request.headers.get(self.header) or uuid.uuid4().hex
        context.state.request_id = request_id
        context.response.set_header(self.header, request_id)


class LoggerMiddleware(Middleware):
    """Log every incoming request as one structured line."""

    def __init__(self, logger: logging.Logger | None = None, *, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger("gantry.request")
        self.level = level

    def process(self, context: ExecutionContext) -> None:
        context.state.received_at = time.perf_counter()
        payload = {
            "event": "request.received",
            "method": context.method,
            "path": context.path,
            "route": context.route or context.path,
        }
        request_id = getattr(context.state, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        self.logger.log(self.level, json.dumps(payload, separators=(",", ":")))


class CORSMiddleware(Middleware):
    """Configure Cross-Origin Resource Sharing headers."""

    def __init__(
        self,
        allow_origin: str = "*",
        allow_methods: str = "*",
        allow_headers: str = "*",
        allow_credentials: bool = False,
        max_age: int = 600,
    ) -> None:
        self.allow_origin = allow_origin
        self.allow_methods = allow_methods
        self.allow_headers = allow_headers
        self.allow_credentials = allow_credentials
        self.max_age = max_age

    def process(self, context: ExecutionContext) -> Outcome | None:
        response = context.response
        response.set_header("access-control-allow-origin", self.allow_origin)
        if self.allow_credentials:
            response.set_header("access-control-allow-credentials", "true")
        if context.method == "OPTIONS" and "access-control-request-method" in context.request.headers:
            response.set_header("access-control-allow-methods", self.allow_methods)
            response.set_header("access-control-allow-headers", self.allow_headers)
            response.set_header("access-control-max-age", str(self.max_age))
            response.set_status(204)
            return ShortCircuit()
        return None


class SecurityHeadersMiddleware(Middleware):
    """Set common HTTP security headers."""

    def __init__(self, headers: dict[str, str] | None = None) -> None:
        self.headers = headers or {
            "x-content-type-options": "nosniff",
            "x-frame-options": "DENY",
            "x-xss-protection": "1; mode=block",
            "referrer-policy": "same-origin",
        }

    def process(self, context: ExecutionContext) -> None:
        for key, value in self.headers.items():
            context.response.set_header(key, value)


class TrustedHostMiddleware(Middleware):
    """Permit only configured host names."""

    def __init__(self, allowed_hosts: Iterable[str]) -> None:
        self.allowed = set(allowed_hosts)

    def process(self, context: ExecutionContext) -> Outcome | None:
        host = context.request.headers.get("host", "").split(":", 1)[0]
        if "*" in self.allowed or host in self.allowed:
            return None
        return ShortCircuit(JSONResponse({"detail": "Invalid host header"}, status_code=400))


class JSONBodyMiddleware(Middleware):
    """Decode JSON request bodies into ``context.state.body``.

    Malformed JSON raises ``BadRequestException`` from :meth:`Request.json`.
    """

    def process(self, context: ExecutionContext) -> None:
        request = context.request
        ctype = request.headers.get("content-type", "")
        if request.body and ctype.split(";", 1)[0].strip() == "application/json":
            context.state.body = request.json()


class RateLimitMiddleware(Middleware):
    """Enforce configurable request-per-window limits."""

    def __init__(
        self,
        limit: int,
        window: float = 1.0,
        *,
        per_client: bool = True,
        include_path: bool = False,
        identifier: Callable[[ExecutionContext], str] | None = None,
        timer: Callable[[], float] | None = None,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window <= 0:
            raise ValueError("window must be positive")
        self.limit = limit
        self.window = window
        self.per_client = per_client
        self.include_path = include_path
        self._identifier = identifier
        self._timer = timer or time.monotonic
        self._history: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitMiddleware | None":
        """Build a limiter from ``GANTRY_RATE_LIMIT*`` settings, if enabled."""
        if settings.rate_limit is None:
            return None
        scope = settings.rate_limit_scope
        return cls(
            limit=settings.rate_limit,
            window=settings.rate_limit_window,
            per_client=scope in {"client", "client_path"},
            include_path=scope in {"path", "client_path"},
        )

    def _client_identifier(self, context: ExecutionContext) -> str:
        if self._identifier is not None:
            return self._identifier(context)
        headers = context.request.headers
        for header in ("x-forwarded-for", "x-real-ip", "client-ip", "remote-addr"):
            raw = headers.get(header)
            if raw:
                return str(raw).split(",")[0].strip()
        return "global"

    def _key_for(self, context: ExecutionContext) -> str:
        base = self._client_identifier(context) if self.per_client else "global"
        if not self.include_path:
            return base
        return f"{base}:{context.path}" if self.per_client else context.path

    def _acquire(self, key: str) -> tuple[bool, float, int]:
        now = self._timer()
        with self._lock:
            bucket = self._history[key]
            cutoff = now - self.window
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= self.limit:
                return False, max(0.0, (bucket[0] + self.window) - now), 0
            bucket.append(now)
            reset = (bucket[0] + self.window) - now
            return True, max(0.0, reset), self.limit - len(bucket)

    def process(self, context: ExecutionContext) -> Outcome | None:
        key = self._key_for(context)
        allowed, reset, remaining = self._acquire(key)
        headers = {
            "x-ratelimit-limit": str(self.limit),
            "x-ratelimit-remaining": str(max(0, remaining)),
            "x-ratelimit-reset": str(max(0, math.ceil(reset))),
        }
        if allowed:
            for name, value in headers.items():
                context.response.set_header(name, value)
            return None
        increment_metric("requests_rate_limited_total")
        _LOGGER.warning(
            json.dumps(
                {"event": "rate_limit.blocked", "client": key, "path": context.path},
                separators=(",", ":"),
            )
        )
        headers["retry-after"] = headers["x-ratelimit-reset"]
        return ShortCircuit(
            Response(
                json.dumps({"detail": "Too Many Requests"}),
                status_code=429,
                headers=headers,
                media_type="application/json",
            )
        )


__all__ = [
    "CORSMiddleware",
    "FunctionMiddleware",
    "JSONBodyMiddleware",
    "LoggerMiddleware",
    "Middleware",
    "MiddlewareChain",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "SecurityHeadersMiddleware",
    "TrustedHostMiddleware",
    "as_middleware",
]
