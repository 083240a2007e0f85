"""Typed route configuration attached at registration time."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class RouteConfig:
    """Declarative configuration read by guards, pipes and interceptors.

    ``None`` means "not set": when a group and a route both carry a config,
    the route's set values win (see :meth:`merged`).
    """

    roles: tuple[str, ...] | None = None
    scopes: tuple[str, ...] | None = None
    public: bool | None = None
    timeout: float | None = None
    cache_ttl: float | None = None
    status_code: int | None = None
    headers: Mapping[str, str] | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.roles is not None:
            object.__setattr__(self, "roles", tuple(self.roles))
        if self.scopes is not None:
            object.__setattr__(self, "scopes", tuple(self.scopes))
        if self.headers is not None:
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a typed field first, then the ``extra`` mapping."""
        if key in _TYPED_FIELDS:
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)

    def merged(self, override: "RouteConfig | None") -> "RouteConfig":
        """Return a config where set values of *override* replace ours."""
        if override is None:
            return self
        values: dict[str, Any] = {}
        for name in _TYPED_FIELDS:
            mine = getattr(self, name)
            theirs = getattr(override, name)
            values[name] = mine if theirs is None else theirs
        values["extra"] = {**self.extra, **override.extra}
        return RouteConfig(**values)


_TYPED_FIELDS = tuple(f.name for f in fields(RouteConfig) if f.name != "extra")

EMPTY_CONFIG = RouteConfig()

__all__ = ["EMPTY_CONFIG", "RouteConfig"]
