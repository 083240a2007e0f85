"""Authorization guards and the guard chain."""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence

from infrastructure.monitoring import increment_metric, start_span

from .context import ExecutionContext
from .exceptions import ForbiddenException, UnauthorizedException
from .metadata import RouteConfig
from .outcome import Continue, Fail, Outcome, ShortCircuit, as_outcome, maybe_await
from .security import decode_jwt, get_api_key, get_bearer_token

_LOGGER = logging.getLogger("gantry.guards")


class Guard:
    """Decide whether a request may reach the route handler."""

    def authorize(
        self, context: ExecutionContext, metadata: RouteConfig
    ) -> bool | Awaitable[bool]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return type(self).__name__


class FunctionGuard(Guard):
    """Adapt ``func(context, metadata) -> bool`` to the guard protocol."""

    def __init__(self, func: Callable[[ExecutionContext, RouteConfig], Any]) -> None:
        self.func = func

    def authorize(self, context: ExecutionContext, metadata: RouteConfig) -> Any:
        return self.func(context, metadata)

    def __repr__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


def as_guard(unit: Guard | Callable[..., Any]) -> Guard:
    if isinstance(unit, Guard):
        return unit
    if isinstance(unit, type) and issubclass(unit, Guard):
        return unit()
    if callable(unit):
        return FunctionGuard(unit)
    raise TypeError(f"{unit!r} is not a guard")


class GuardChain:
    """Logical AND over guards, evaluated in registration order.

    The first falsy result yields ``Fail(ForbiddenException())``; a guard that
    raises or returns ``Fail`` has its own error propagated unchanged.
    ``Continue(value)`` is judged by its value and ``ShortCircuit`` denies.
    """

    def __init__(self, guards: Iterable[Guard]) -> None:
        self.guards: tuple[Guard, ...] = tuple(guards)

    async def run(self, context: ExecutionContext) -> Outcome:
        for guard in self.guards:
            with start_span("guard", **{"gantry.unit": repr(guard)}):
                try:
                    with context.response.locked():
                        result = await maybe_await(guard.authorize(context, context.config))
                except Exception as exc:  # noqa: BLE001 - propagated as Fail
                    self._record_denial(context, guard, type(exc).__name__)
                    return Fail(exc)
            outcome = as_outcome(result)
            if isinstance(outcome, Fail):
                self._record_denial(context, guard, type(outcome.error).__name__)
                return outcome
            if isinstance(outcome, ShortCircuit) or not outcome.value:
                self._record_denial(context, guard, "denied")
                return Fail(ForbiddenException())
        return Continue()

    @staticmethod
    def _record_denial(context: ExecutionContext, guard: Guard, reason: str) -> None:
        increment_metric("guard_denials_total")
        _LOGGER.info(
            json.dumps(
                {
                    "event": "guard.denied",
                    "guard": repr(guard),
                    "reason": reason,
                    "method": context.method,
                    "path": context.path,
                },
                separators=(",", ":"),
            )
        )

    def __len__(self) -> int:
        return len(self.guards)


class BearerTokenGuard(Guard):
    """Require a valid HS256 bearer token; the payload becomes ``state.user``.

    Routes configured with ``public=True`` are let through without a token.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def authorize(self, context: ExecutionContext, metadata: RouteConfig) -> bool:
        token = get_bearer_token(context.request.headers.get("authorization"))
        if token is None:
            if metadata.public:
                return True
            raise UnauthorizedException("Missing bearer token")
        payload = decode_jwt(token, self.secret)
        if payload is None:
            raise UnauthorizedException("Invalid or expired token")
        context.state.user = payload
        return True


class ApiKeyGuard(Guard):
    """Accept requests presenting one of the configured API keys."""

    def __init__(self, keys: Iterable[str], name: str = "api_key") -> None:
        self.keys = tuple(keys)
        self.name = name

    def authorize(self, context: ExecutionContext, metadata: RouteConfig) -> bool:
        if metadata.public:
            return True
        request = context.request
        key = get_api_key(request.headers, request.query_params, request.cookies, self.name)
        if not key:
            raise UnauthorizedException("Missing API key")
        return any(hmac.compare_digest(key, candidate) for candidate in self.keys)


def _claims(user: Any, name: str) -> Sequence[str]:
    if isinstance(user, dict):
        value = user.get(name, [])
    else:
        value = getattr(user, name, [])
    if isinstance(value, str):
        return value.split()
    return list(value or [])


class RolesGuard(Guard):
    """Pass when the user holds any of the route's ``roles``."""

    def authorize(self, context: ExecutionContext, metadata: RouteConfig) -> bool:
        if not metadata.roles:
            return True
        user_roles = _claims(context.user, "roles")
        return any(role in user_roles for role in metadata.roles)


class ScopesGuard(Guard):
    """Pass when the user's ``scopes`` claim covers every route scope."""

    def authorize(self, context: ExecutionContext, metadata: RouteConfig) -> bool:
        if not metadata.scopes:
            return True
        granted = _claims(context.user, "scopes")
        return all(scope in granted for scope in metadata.scopes)


__all__ = [
    "ApiKeyGuard",
    "BearerTokenGuard",
    "FunctionGuard",
    "Guard",
    "GuardChain",
    "RolesGuard",
    "ScopesGuard",
    "as_guard",
]
