"""Wrap-around interceptors composed as an onion around pipes and handler."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Mapping, MutableMapping

from infrastructure.configuration import Settings
from infrastructure.monitoring import increment_metric, span_ids, start_span

from .context import ExecutionContext
from .exceptions import (
    BadGatewayException,
    HTTPException,
    RequestTimeoutException,
    ServiceUnavailableException,
    is_unknown_error,
)
from .http import Response
from .outcome import Continue, Fail, Outcome, ShortCircuit, maybe_await, run_unit

_LOGGER = logging.getLogger("gantry.pipeline")

CallNext = Callable[[], Awaitable[Any]]


class Interceptor:
    """Run code before and after the rest of the chain.

    ``around`` receives ``call_next``; awaiting it runs every inner
    interceptor, the pipes and the handler, and returns the handler result
    or raises its error.
    """

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        return await call_next()

    def __repr__(self) -> str:
        return type(self).__name__


class FunctionInterceptor(Interceptor):
    def __init__(self, func: Callable[[ExecutionContext, CallNext], Any]) -> None:
        self.func = func

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        return await maybe_await(self.func(context, call_next))

    def __repr__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


def as_interceptor(unit: Interceptor | Callable[..., Any]) -> Interceptor:
    if isinstance(unit, Interceptor):
        return unit
    if isinstance(unit, type) and issubclass(unit, Interceptor):
        return unit()
    if callable(unit):
        return FunctionInterceptor(unit)
    raise TypeError(f"{unit!r} is not an interceptor")


def _resolve(result: Any, context: ExecutionContext) -> Any:
    """Fold an explicit Outcome returned by an interceptor back into a value."""
    if isinstance(result, Fail):
        raise result.error
    if isinstance(result, ShortCircuit):
        return result.response if result.response is not None else context.response.to_response()
    if isinstance(result, Continue):
        return result.value
    return result


class InterceptorChain:
    """Onion composition: the first registered interceptor is the outermost."""

    def __init__(self, interceptors: Iterable[Interceptor]) -> None:
        self.interceptors: tuple[Interceptor, ...] = tuple(interceptors)

    async def run(self, context: ExecutionContext, terminal: CallNext) -> Outcome:
        interceptors = self.interceptors

        async def invoke(index: int) -> Any:
            if index == len(interceptors):
                return await terminal()
            interceptor = interceptors[index]

            async def call_next() -> Any:
                return await invoke(index + 1)

            with start_span("interceptor", **{"gantry.unit": repr(interceptor)}):
                result = await maybe_await(interceptor.around(context, call_next))
            return _resolve(result, context)

        return await run_unit(invoke, 0)

    def __len__(self) -> int:
        return len(self.interceptors)


class LoggingInterceptor(Interceptor):
    """Emit one JSON line per handled request, including failures."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _LOGGER

    def _payload(self, context: ExecutionContext, status: int, start: float) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": "request.handled",
            "method": context.method,
            "route": context.route or context.path,
            "handler": context.handler_name(),
            "status": status,
            "duration_ms": round((time.perf_counter() - start) * 1000, 3),
        }
        payload.update(span_ids())
        request_id = getattr(context.state, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        return payload

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        start = time.perf_counter()
        try:
            result = await call_next()
        except Exception as exc:
            status = exc.status_code if isinstance(exc, HTTPException) else 500
            payload = self._payload(context, status, start)
            payload["error"] = type(exc).__name__
            self.logger.error(json.dumps(payload, separators=(",", ":")))
            raise
        status = result.status_code if isinstance(result, Response) else context.default_status()
        self.logger.info(json.dumps(self._payload(context, status, start), separators=(",", ":")))
        return result


class TransformInterceptor(Interceptor):
    """Wrap every plain result as ``{"data": result}``."""

    def __init__(self, key: str = "data") -> None:
        self.key = key

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        result = await call_next()
        if isinstance(result, Response):
            return result
        return {self.key: result}


class ExcludeNullInterceptor(Interceptor):
    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        result = await call_next()
        return "" if result is None else result


class ErrorsInterceptor(Interceptor):
    """Translate errors raised downstream into other exceptions.

    *mapping* maps exception types to a factory ``factory(exc) -> Exception``;
    the first matching entry wins. Without a mapping every error outside the
    HTTP taxonomy becomes :class:`BadGatewayException`.
    """

    def __init__(
        self,
        mapping: Mapping[type[BaseException], Callable[[BaseException], Exception]] | None = None,
    ) -> None:
        self.mapping = dict(mapping) if mapping is not None else None

    def _translate(self, exc: Exception) -> Exception | None:
        if self.mapping is None:
            return BadGatewayException() if is_unknown_error(exc) else None
        for error_type, factory in self.mapping.items():
            if isinstance(exc, error_type):
                return factory(exc)
        return None

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        try:
            return await call_next()
        except Exception as exc:
            replacement = self._translate(exc)
            if replacement is None or replacement is exc:
                raise
            raise replacement from exc


class CacheInterceptor(Interceptor):
    """Serve repeated GET requests from *store* until their TTL expires.

    The store is shared and unsynchronised; callers that share it across
    threads must lock around it themselves.
    """

    def __init__(
        self,
        store: MutableMapping[str, tuple[float, Any]] | None = None,
        *,
        ttl: float | None = None,
        timer: Callable[[], float] | None = None,
    ) -> None:
        self.store = store if store is not None else {}
        self.ttl = ttl
        self._timer = timer or time.monotonic

    @staticmethod
    def key_for(context: ExecutionContext) -> str:
        query = context.request.query_string
        return f"{context.path}?{query}" if query else context.path

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        if context.method != "GET":
            return await call_next()
        ttl = context.config.cache_ttl if context.config.cache_ttl is not None else self.ttl
        key = self.key_for(context)
        now = self._timer()
        entry = self.store.get(key)
        if entry is not None:
            expires_at, value = entry
            if expires_at > now:
                context.response.set_header("x-cache", "HIT")
                return value
            self.store.pop(key, None)
        result = await call_next()
        if ttl is None or ttl > 0:
            expires_at = float("inf") if ttl is None else now + ttl
            self.store[key] = (expires_at, result)
        context.response.set_header("x-cache", "MISS")
        return result


class TimeoutInterceptor(Interceptor):
    """Race the rest of the chain against a timer.

    The timeout comes from ``RouteConfig.timeout``, then the constructor,
    then ``Settings.request_timeout``. On expiry the downstream task is left
    running detached and its eventual result is discarded.
    """

    def __init__(self, timeout: float | None = None, *, settings: Settings | None = None) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self.settings = settings
        self._detached: set[asyncio.Future[Any]] = set()

    def resolve_timeout(self, context: ExecutionContext) -> float | None:
        if context.config.timeout is not None:
            return context.config.timeout
        if self.timeout is not None:
            return self.timeout
        if self.settings is not None:
            return self.settings.request_timeout
        return None

    def _forget(self, task: asyncio.Future[Any]) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.debug("detached task failed after timeout: %r", task.exception())

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        timeout = self.resolve_timeout(context)
        if timeout is None:
            return await call_next()
        task = asyncio.ensure_future(call_next())
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            return task.result()
        self._detached.add(task)
        task.add_done_callback(self._forget)
        increment_metric("interceptor_timeouts_total")
        _LOGGER.warning(
            json.dumps(
                {
                    "event": "interceptor.timeout",
                    "method": context.method,
                    "route": context.route or context.path,
                    "timeout": timeout,
                },
                separators=(",", ":"),
            )
        )
        return Fail(RequestTimeoutException())


class RetryInterceptor(Interceptor):
    """Re-run the rest of the chain when it raises one of *retry_on*.

    Attempts are bounded; the delay before attempt ``n`` is
    ``backoff * factor ** (n - 1)``.
    """

    def __init__(
        self,
        attempts: int = 3,
        *,
        backoff: float = 0.1,
        factor: float = 2.0,
        retry_on: tuple[type[BaseException], ...] = (
            ConnectionError,
            TimeoutError,
            ServiceUnavailableException,
        ),
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff = backoff
        self.factor = factor
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep

    async def around(self, context: ExecutionContext, call_next: CallNext) -> Any:
        attempt = 1
        while True:
            try:
                return await call_next()
            except self.retry_on as exc:
                if attempt >= self.attempts:
                    raise
                delay = self.backoff * self.factor ** (attempt - 1)
                _LOGGER.info(
                    json.dumps(
                        {
                            "event": "interceptor.retry",
                            "route": context.route or context.path,
                            "attempt": attempt,
                            "error": type(exc).__name__,
                            "delay": delay,
                        },
                        separators=(",", ":"),
                    )
                )
                await self._sleep(delay)
                attempt += 1


__all__ = [
    "CacheInterceptor",
    "CallNext",
    "ErrorsInterceptor",
    "ExcludeNullInterceptor",
    "FunctionInterceptor",
    "Interceptor",
    "InterceptorChain",
    "LoggingInterceptor",
    "RetryInterceptor",
    "TimeoutInterceptor",
    "TransformInterceptor",
    "as_interceptor",
]
