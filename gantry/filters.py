"""Exception filters: turn an unhandled pipeline error into the final response."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from infrastructure.monitoring import start_span

from .context import ExecutionContext
from .exceptions import HTTPException, ValidationError
from .http import JSONResponse, Response, render_result
from .outcome import maybe_await

_LOGGER = logging.getLogger("gantry.filters")


class ExceptionFilter:
    """Catch errors of the types listed in ``catches``; empty catches all."""

    catches: tuple[type[BaseException], ...] = ()

    def matches(self, error: BaseException) -> bool:
        return not self.catches or isinstance(error, self.catches)

    def catch(
        self, error: BaseException, context: ExecutionContext
    ) -> Response | Awaitable[Response]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return type(self).__name__


class FunctionFilter(ExceptionFilter):
    """Adapt ``func(error, context)`` for the given exception types."""

    def __init__(
        self,
        func: Callable[[BaseException, ExecutionContext], Any],
        catches: Iterable[type[BaseException]] = (),
    ) -> None:
        self.func = func
        self.catches = tuple(catches)

    def catch(self, error: BaseException, context: ExecutionContext) -> Any:
        return self.func(error, context)

    def __repr__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


def as_filter(unit: ExceptionFilter | Callable[..., Any]) -> ExceptionFilter:
    if isinstance(unit, ExceptionFilter):
        return unit
    if isinstance(unit, type) and issubclass(unit, ExceptionFilter):
        return unit()
    if callable(unit):
        return FunctionFilter(unit, getattr(unit, "catches", ()))
    raise TypeError(f"{unit!r} is not an exception filter")


def catch(*exc_types: type[BaseException]) -> Callable[[Callable[..., Any]], ExceptionFilter]:
    """Decorate ``func(error, context)`` into a filter for *exc_types*."""

    def decorator(func: Callable[..., Any]) -> ExceptionFilter:
        return FunctionFilter(func, exc_types)

    return decorator


def error_body(error: BaseException, context: ExecutionContext) -> tuple[int, dict[str, Any]]:
    """Return ``(status, body)`` in the default error shape."""

    if isinstance(error, HTTPException):
        status = error.status_code
        message = error.detail
    else:
        status = 500
        message = "Internal server error"
    body: dict[str, Any] = {
        "statusCode": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": context.path,
        "message": message,
    }
    if isinstance(error, ValidationError):
        body["errors"] = error.errors()
    return status, body


class DefaultExceptionFilter(ExceptionFilter):
    """Render any error; unknown errors become a generic 500."""

    def catch(self, error: BaseException, context: ExecutionContext) -> Response:
        status, body = error_body(error, context)
        headers = dict(error.headers) if isinstance(error, HTTPException) else {}
        if status >= 500:
            _LOGGER.error(
                json.dumps(
                    {
                        "event": "request.error",
                        "method": context.method,
                        "path": context.path,
                        "error": type(error).__name__,
                    },
                    separators=(",", ":"),
                ),
                exc_info=error if not isinstance(error, HTTPException) else None,
            )
        return JSONResponse(body, status_code=status, headers=headers)


class HttpExceptionFilter(DefaultExceptionFilter):
    """Default rendering restricted to :class:`HTTPException`."""

    catches = (HTTPException,)


class ExceptionFilterChain:
    """Filters in effective order; the first match answers."""

    def __init__(
        self,
        filters: Iterable[ExceptionFilter],
        fallback: ExceptionFilter | None = None,
    ) -> None:
        self.filters: tuple[ExceptionFilter, ...] = tuple(filters)
        self.fallback = fallback or DefaultExceptionFilter()

    def select(self, error: BaseException) -> ExceptionFilter:
        """Return the first filter whose ``matches`` accepts *error*.

        A filter whose ``matches`` raises is logged and the fallback answers.
        """
        for exc_filter in self.filters:
            try:
                matched = exc_filter.matches(error)
            except Exception as filter_error:
                self._log_failure(exc_filter, error, filter_error)
                return self.fallback
            if matched:
                return exc_filter
        return self.fallback

    async def run(self, error: BaseException, context: ExecutionContext) -> Response:
        exc_filter = self.select(error)
        with start_span("filter", **{"gantry.unit": repr(exc_filter)}):
            if exc_filter is self.fallback:
                return await self._render(exc_filter, error, context)
            try:
                return await self._render(exc_filter, error, context)
            except Exception as filter_error:
                self._log_failure(exc_filter, error, filter_error)
                return await self._render(self.fallback, error, context)

    @staticmethod
    def _log_failure(
        exc_filter: ExceptionFilter, error: BaseException, filter_error: Exception
    ) -> None:
        _LOGGER.error(
            json.dumps(
                {
                    "event": "filter.failed",
                    "filter": repr(exc_filter),
                    "error": type(error).__name__,
                    "filter_error": type(filter_error).__name__,
                },
                separators=(",", ":"),
            ),
            exc_info=filter_error,
        )

    @staticmethod
    async def _render(
        exc_filter: ExceptionFilter, error: BaseException, context: ExecutionContext
    ) -> Response:
        result = await maybe_await(exc_filter.catch(error, context))
        if isinstance(result, Response):
            return result
        status = error.status_code if isinstance(error, HTTPException) else 500
        return render_result(result, status)

    def __len__(self) -> int:
        return len(self.filters)


__all__ = [
    "DefaultExceptionFilter",
    "ExceptionFilter",
    "ExceptionFilterChain",
    "FunctionFilter",
    "HttpExceptionFilter",
    "as_filter",
    "catch",
    "error_body",
]
