"""Compiled per-route request pipeline.

A :class:`RequestPipeline` is built once per route when the application
compiles its chains and is immutable afterwards. Running it threads one
:class:`ExecutionContext` through middleware, guards, interceptors, pipes
and the handler, and hands any failure to the exception filters. The
response writer is committed exactly once per run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from infrastructure.monitoring import increment_metric, record_latency, start_span

from .context import ExecutionContext
from .filters import ExceptionFilterChain
from .guards import GuardChain
from .http import Response, render_result
from .interceptors import InterceptorChain
from .metadata import EMPTY_CONFIG, RouteConfig
from .middleware import MiddlewareChain
from .outcome import Continue, Outcome, ShortCircuit, maybe_await
from .params import BoundArgument, resolve_arguments
from .pipes import Pipe

_LOGGER = logging.getLogger("gantry.pipeline")


@dataclass(frozen=True)
class RequestPipeline:
    method: str
    route: str
    handler: Callable[..., Any]
    middleware: MiddlewareChain = field(default_factory=lambda: MiddlewareChain(()))
    guards: GuardChain = field(default_factory=lambda: GuardChain(()))
    interceptors: InterceptorChain = field(default_factory=lambda: InterceptorChain(()))
    pipes: tuple[Pipe, ...] = ()
    arguments: tuple[BoundArgument, ...] = ()
    filters: ExceptionFilterChain = field(default_factory=lambda: ExceptionFilterChain(()))
    config: RouteConfig = EMPTY_CONFIG

    def describe(self) -> dict[str, list[str]]:
        """Effective chains by stage, as unit names."""
        return {
            "middleware": [repr(mw) for mw in self.middleware.middleware],
            "guards": [repr(g) for g in self.guards.guards],
            "interceptors": [repr(i) for i in self.interceptors.interceptors],
            "pipes": [repr(p) for p in self.pipes],
            "filters": [repr(f) for f in self.filters.filters],
        }

    async def _call_handler(self, context: ExecutionContext) -> Any:
        arguments = await resolve_arguments(context, self.arguments, self.pipes)
        with start_span("handler", **{"gantry.handler": context.handler_name()}):
            return await maybe_await(self.handler(**arguments))

    async def _advance(self, context: ExecutionContext) -> Outcome:
        outcome = await self.middleware.run(context)
        if not isinstance(outcome, Continue):
            return outcome
        outcome = await self.guards.run(context)
        if not isinstance(outcome, Continue):
            return outcome

        async def terminal() -> Any:
            return await self._call_handler(context)

        return await self.interceptors.run(context, terminal)

    def _render(self, context: ExecutionContext, value: Any) -> Response:
        status = context.response.status_code or context.default_status()
        response = render_result(value, status)
        if self.config.headers:
            response = response.with_defaults(self.config.headers)
        return response

    async def run(self, context: ExecutionContext) -> Response:
        increment_metric("requests_total")
        start = time.perf_counter()
        with start_span(
            "request", **{"http.method": context.method, "http.route": self.route}
        ) as span:
            outcome = await self._advance(context)
            if isinstance(outcome, Continue):
                response = self._render(context, outcome.value)
            elif isinstance(outcome, ShortCircuit):
                response = (
                    outcome.response
                    if outcome.response is not None
                    else context.response.to_response()
                )
            else:
                increment_metric("requests_failed_total")
                response = await self.filters.run(outcome.error, context)
            if context.response.committed:
                # a stage committed its own response; that one is final
                final = context.response.final
            else:
                final = context.response.commit(response)
            span.set_attribute("http.status_code", final.status_code)
        duration_ms = (time.perf_counter() - start) * 1000
        record_latency(f"{self.method} {self.route}", duration_ms)
        _LOGGER.debug(
            "%s %s -> %s (%s) in %.2fms",
            context.method,
            context.path,
            final.status_code,
            type(outcome).__name__,
            duration_ms,
        )
        return final


def failing_handler(error_factory: Callable[[], Exception]) -> Callable[[], Any]:
    """Handler that raises a fresh error, used for unmatched requests."""

    def handler() -> Any:
        raise error_factory()

    handler.__qualname__ = "unmatched"
    return handler


__all__ = ["RequestPipeline", "failing_handler"]
