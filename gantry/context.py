"""Per-request execution context threaded through every stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Callable

from .http import Request, ResponseWriter
from .metadata import EMPTY_CONFIG, RouteConfig


@dataclass
class ExecutionContext:
    """Request snapshot, response writer and per-request state.

    ``config`` is the route's merged :class:`RouteConfig`; ``handler`` and
    ``route`` are ``None`` when no route matched.
    """

    request: Request
    response: ResponseWriter = field(default_factory=ResponseWriter)
    config: RouteConfig = EMPTY_CONFIG
    handler: Callable[..., Any] | None = None
    route: str | None = None
    state: SimpleNamespace = field(default_factory=SimpleNamespace)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def user(self) -> Any:
        return getattr(self.state, "user", None)

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def default_status(self) -> int:
        """Status for a plain handler result: configured, else 201 for POST."""
        if self.config.status_code is not None:
            return self.config.status_code
        return 201 if self.method == "POST" else 200

    def handler_name(self) -> str:
        if self.handler is None:
            return ""
        return getattr(self.handler, "__qualname__", repr(self.handler))


__all__ = ["ExecutionContext"]
