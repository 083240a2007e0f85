"""Application and router: registration, compilation and dispatch."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from infrastructure.configuration import Settings, load_settings, validate_settings

from .context import ExecutionContext
from .exceptions import MethodNotAllowedException, NotFoundException
from .filters import ExceptionFilter, ExceptionFilterChain, as_filter
from .guards import Guard, GuardChain, as_guard
from .http import HeaderInput, Request, Response
from .interceptors import Interceptor, InterceptorChain, TimeoutInterceptor, as_interceptor
from .metadata import EMPTY_CONFIG, RouteConfig
from .middleware import Middleware, MiddlewareChain, RateLimitMiddleware, as_middleware
from .params import bind_arguments
from .pipeline import RequestPipeline, failing_handler
from .pipes import Pipe, as_pipe
from .routing import PathTemplate, compile_path, join_paths

_LOGGER = logging.getLogger("gantry")

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

MiddlewareEntry = tuple[Middleware, tuple[str, ...]]


@dataclass(frozen=True)
class RouteSpec:
    """A route as registered, before chains are compiled."""

    method: str
    path: str
    handler: Callable[..., Any]
    middleware: tuple[MiddlewareEntry, ...] = ()
    guards: tuple[Guard, ...] = ()
    interceptors: tuple[Interceptor, ...] = ()
    pipes: tuple[Pipe, ...] = ()
    filters: tuple[ExceptionFilter, ...] = ()
    config: RouteConfig | None = None


@dataclass(frozen=True)
class CompiledRoute:
    method: str
    template: PathTemplate
    pipeline: RequestPipeline

    @property
    def path(self) -> str:
        return self.template.template


class Router:
    """A group of routes sharing a prefix, chains and configuration."""

    def __init__(self, prefix: str = "", *, config: RouteConfig | None = None) -> None:
        self.prefix = prefix
        self.config = config
        self.routes: list[RouteSpec] = []
        self._middleware: list[MiddlewareEntry] = []
        self._guards: list[Guard] = []
        self._interceptors: list[Interceptor] = []
        self._pipes: list[Pipe] = []
        self._filters: list[ExceptionFilter] = []
        self._startup_hooks: list[Callable[[], Any]] = []
        self._shutdown_hooks: list[Callable[[], Any]] = []
        self._frozen = False

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("chains are compiled; register units before startup")

    def use_middleware(
        self, *middleware: Middleware | Callable[..., Any], exclude: Iterable[str] = ()
    ) -> None:
        """Append middleware; it is skipped for paths matching *exclude* globs."""
        self._check_open()
        patterns = tuple(exclude)
        self._middleware.extend((as_middleware(mw), patterns) for mw in middleware)

    def use_guards(self, *guards: Guard | Callable[..., Any]) -> None:
        self._check_open()
        self._guards.extend(as_guard(g) for g in guards)

    def use_interceptors(self, *interceptors: Interceptor | Callable[..., Any]) -> None:
        self._check_open()
        self._interceptors.extend(as_interceptor(i) for i in interceptors)

    def use_pipes(self, *pipes: Pipe | Callable[..., Any]) -> None:
        self._check_open()
        self._pipes.extend(as_pipe(p) for p in pipes)

    def use_filters(self, *filters: ExceptionFilter | Callable[..., Any]) -> None:
        self._check_open()
        self._filters.extend(as_filter(f) for f in filters)

    def add_route(
        self,
        path: str,
        handler: Callable[..., Any],
        methods: Sequence[str] = ("GET",),
        *,
        middleware: Sequence[Middleware | Callable[..., Any]] = (),
        guards: Sequence[Guard | Callable[..., Any]] = (),
        interceptors: Sequence[Interceptor | Callable[..., Any]] = (),
        pipes: Sequence[Pipe | Callable[..., Any]] = (),
        filters: Sequence[ExceptionFilter | Callable[..., Any]] = (),
        config: RouteConfig | None = None,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._check_open()
        if status_code is not None or headers is not None:
            config = (config or EMPTY_CONFIG).merged(
                RouteConfig(status_code=status_code, headers=headers)
            )
        for method in methods:
            method = method.upper()
            if method not in HTTP_METHODS:
                raise ValueError(f"unsupported HTTP method {method!r}")
            self.routes.append(
                RouteSpec(
                    method,
                    path,
                    handler,
                    tuple((as_middleware(mw), ()) for mw in middleware),
                    tuple(as_guard(g) for g in guards),
                    tuple(as_interceptor(i) for i in interceptors),
                    tuple(as_pipe(p) for p in pipes),
                    tuple(as_filter(f) for f in filters),
                    config,
                )
            )

    def route(
        self, path: str, methods: Sequence[str] = ("GET",), **options: Any
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add_route(path, func, methods, **options)
            return func

        return decorator

    def get(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("GET",), **options)

    def post(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("POST",), **options)

    def put(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("PUT",), **options)

    def patch(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("PATCH",), **options)

    def delete(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("DELETE",), **options)

    def options(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ("OPTIONS",), **options)

    def on_event(self, event: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        if event not in {"startup", "shutdown"}:
            raise ValueError(f"unknown lifecycle event {event!r}")

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            if event == "startup":
                self._startup_hooks.append(func)
            else:
                self._shutdown_hooks.append(func)
            return func

        return decorator


class GantryApp(Router):
    """Composition root: global chains, groups and the compiled route table.

    Units registered on the app itself are global; units registered on an
    included :class:`Router` apply to that group only. Chains compile on
    :meth:`startup` or the first :meth:`dispatch`, after which registration
    raises ``RuntimeError``.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        config: RouteConfig | None = None,
    ) -> None:
        super().__init__("", config=config)
        self.settings = settings or load_settings()
        validate_settings(self.settings)
        self._groups: list[tuple[str, Router]] = []
        self._compiled: tuple[CompiledRoute, ...] | None = None
        self._global_middleware = MiddlewareChain(())
        self._global_filters = ExceptionFilterChain(())

    def include_router(self, router: Router, prefix: str = "") -> None:
        """Attach *router* as a group mounted under *prefix*."""
        self._check_open()
        self._groups.append((prefix, router))

    def _hooks(self, event: str) -> list[Callable[[], Any]]:
        owners: list[Router] = [self] + [router for _, router in self._groups]
        attr = "_startup_hooks" if event == "startup" else "_shutdown_hooks"
        return [hook for owner in owners for hook in getattr(owner, attr)]

    @property
    def compiled(self) -> bool:
        return self._compiled is not None

    def _ambient_middleware(self) -> list[MiddlewareEntry]:
        limiter = RateLimitMiddleware.from_settings(self.settings)
        return [(limiter, ())] if limiter is not None else []

    def _ambient_interceptors(self) -> list[Interceptor]:
        if self.settings.request_timeout is None:
            return []
        return [TimeoutInterceptor(settings=self.settings)]

    def compile(self) -> tuple[CompiledRoute, ...]:
        """Freeze registration and build one pipeline per route."""
        if self._compiled is not None:
            return self._compiled
        global_mw = self._ambient_middleware() + self._middleware
        global_interceptors = self._ambient_interceptors() + self._interceptors
        compiled: list[CompiledRoute] = []
        groups: list[tuple[str, Router | None]] = [("", None)] + list(self._groups)
        for prefix, group in groups:
            owner = group or self
            base = join_paths(prefix, owner.prefix) if group is not None else ""
            group_config = EMPTY_CONFIG.merged(self.config)
            if group is not None:
                group_config = group_config.merged(group.config)
            for spec in owner.routes:
                template = compile_path(join_paths(base, spec.path))
                scoped = group._middleware if group is not None else []
                group_guards = group._guards if group is not None else []
                group_interceptors = group._interceptors if group is not None else []
                group_pipes = group._pipes if group is not None else []
                group_filters = group._filters if group is not None else []
                pipeline = RequestPipeline(
                    method=spec.method,
                    route=template.template,
                    handler=spec.handler,
                    middleware=MiddlewareChain(global_mw + scoped + list(spec.middleware)),
                    guards=GuardChain(self._guards + group_guards + list(spec.guards)),
                    interceptors=InterceptorChain(
                        global_interceptors + group_interceptors + list(spec.interceptors)
                    ),
                    pipes=tuple(self._pipes + group_pipes + list(spec.pipes)),
                    arguments=bind_arguments(spec.handler, template.param_names),
                    filters=ExceptionFilterChain(
                        reversed(self._filters + group_filters + list(spec.filters))
                    ),
                    config=group_config.merged(spec.config),
                )
                compiled.append(CompiledRoute(spec.method, template, pipeline))
            owner._frozen = True
        self._frozen = True
        self._global_middleware = MiddlewareChain(global_mw)
        self._global_filters = ExceptionFilterChain(reversed(self._filters))
        self._compiled = tuple(compiled)
        _LOGGER.info("compiled %d routes", len(compiled))
        return self._compiled

    @property
    def route_table(self) -> tuple[CompiledRoute, ...]:
        return self.compile()

    def _unmatched(self, method: str, path: str, allowed: list[str]) -> RequestPipeline:
        if allowed:
            allow = ", ".join(dict.fromkeys(allowed))
            handler = failing_handler(
                lambda: MethodNotAllowedException(headers={"allow": allow})
            )
        else:
            handler = failing_handler(NotFoundException)
        return RequestPipeline(
            method=method,
            route=path,
            handler=handler,
            middleware=self._global_middleware,
            filters=self._global_filters,
        )

    def match(self, method: str, path: str) -> tuple[CompiledRoute | None, dict[str, str], list[str]]:
        """Return the matching route, its path parameters and allowed methods."""
        allowed: list[str] = []
        for entry in self.compile():
            params = entry.template.match(path)
            if params is None:
                continue
            if entry.method == method:
                return entry, params, allowed
            allowed.append(entry.method)
        return None, {}, allowed

    async def dispatch(
        self,
        method: str,
        url: str,
        headers: HeaderInput | None = None,
        body: bytes = b"",
    ) -> Response:
        """Run one request through its pipeline and return the committed response."""
        request = Request(method, url, body, headers)
        entry, params, allowed = self.match(request.method, request.path)
        if entry is None:
            context = ExecutionContext(request)
            return await self._unmatched(request.method, request.path, allowed).run(context)
        pipeline = entry.pipeline
        context = ExecutionContext(
            request.with_path_params(params),
            config=pipeline.config,
            handler=pipeline.handler,
            route=entry.path,
        )
        return await pipeline.run(context)

    async def startup(self) -> None:
        self.compile()
        for hook in self._hooks("startup"):
            result = hook()
            if inspect.iscoroutine(result):
                await result

    async def shutdown(self) -> None:
        for hook in self._hooks("shutdown"):
            result = hook()
            if inspect.iscoroutine(result):
                await result


__all__ = ["CompiledRoute", "GantryApp", "HTTP_METHODS", "RouteSpec", "Router"]
