"""Handler parameter markers and argument resolution."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Iterable, get_type_hints

from infrastructure.monitoring import increment_metric, start_span

from .context import ExecutionContext
from .exceptions import ValidationError
from .pipes import ArgumentDescriptor, Pipe, PipeChain, as_pipe, is_model_annotation

_MISSING = inspect.Parameter.empty


class Marker:
    """Default value declaring where a handler argument comes from."""

    source = ""

    def __init__(self, name: str | None = None, *pipes: Pipe | Callable[..., Any]) -> None:
        self.name = name
        self.pipes: tuple[Pipe, ...] = tuple(as_pipe(p) for p in pipes)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Param(Marker):
    source = "path"


class Query(Marker):
    source = "query"


class Body(Marker):
    """The whole JSON body, or one top-level key of it when *name* is given."""

    source = "body"


class Header(Marker):
    source = "header"


class Ctx(Marker):
    """Inject the :class:`ExecutionContext`; never piped."""

    source = "context"

    def __init__(self) -> None:
        super().__init__(None)


class Custom(Marker):
    """Custom parameter: ``factory(data, context)`` produces the value."""

    source = "custom"

    def __init__(
        self,
        factory: Callable[[Any, ExecutionContext], Any],
        *pipes: Pipe | Callable[..., Any],
        data: Any = None,
    ) -> None:
        super().__init__(None, *pipes)
        self.factory = factory
        self.data = data


@dataclass(frozen=True)
class BoundArgument:
    """One handler parameter with its source and parameter-scoped pipes."""

    descriptor: ArgumentDescriptor
    pipes: tuple[Pipe, ...] = ()
    default: Any = _MISSING
    marker: Marker | None = None

    def extract(self, context: ExecutionContext) -> tuple[Any, bool]:
        """Return the raw value and whether it should go through the pipes."""
        descriptor = self.descriptor
        request = context.request
        source = descriptor.source
        if source == "context":
            return context, False
        if isinstance(self.marker, Custom):
            return self.marker.factory(self.marker.data, context), True
        if source == "path":
            value = request.path_params.get(descriptor.key or descriptor.name)
        elif source == "header":
            value = request.headers.get(descriptor.key or descriptor.name)
        elif source == "body":
            body = getattr(context.state, "body", None)
            if body is None:
                body = request.json()
            if descriptor.key is None:
                value = body
            else:
                value = body.get(descriptor.key) if isinstance(body, dict) else None
        else:
            value = request.query_params.get(descriptor.key or descriptor.name)
        if value is None and self.marker is None:
            if self.default is not _MISSING:
                return self.default, False
            raise ValidationError(
                "Field required", loc=descriptor.loc, typ="missing", input_value=None
            )
        return value, True


def _annotations(handler: Callable[..., Any]) -> dict[str, Any]:
    try:
        return get_type_hints(handler)
    except (NameError, TypeError):
        return dict(getattr(handler, "__annotations__", {}))


def bind_arguments(
    handler: Callable[..., Any], path_params: Iterable[str]
) -> tuple[BoundArgument, ...]:
    """Describe every parameter of *handler* in declaration order.

    Unmarked parameters bind to a path parameter of the same name, then a
    parameter named ``context`` to the context, then model-annotated
    parameters (or one named ``payload``) to the body, else to the query.
    """

    path_names = set(path_params)
    hints = _annotations(handler)
    bound: list[BoundArgument] = []
    for param in inspect.signature(handler).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, param.annotation)
        default = param.default
        if isinstance(default, Marker):
            if isinstance(default, Header):
                key = (default.name or param.name.replace("_", "-")).lower()
            elif isinstance(default, Body):
                key = default.name
            else:
                key = default.name or param.name
            bound.append(
                BoundArgument(
                    ArgumentDescriptor(param.name, default.source, key, annotation),
                    default.pipes,
                    _MISSING,
                    default,
                )
            )
            continue
        if param.name in path_names:
            source, key = "path", param.name
        elif param.name == "context" or annotation is ExecutionContext:
            source, key = "context", None
        elif param.name == "payload" or is_model_annotation(annotation):
            source, key = "body", None
        else:
            source, key = "query", param.name
        bound.append(
            BoundArgument(ArgumentDescriptor(param.name, source, key, annotation), (), default)
        )
    return tuple(bound)


async def resolve_arguments(
    context: ExecutionContext,
    arguments: Iterable[BoundArgument],
    shared_pipes: tuple[Pipe, ...] = (),
) -> dict[str, Any]:
    """Extract and pipe every argument; the first failure propagates."""

    values: dict[str, Any] = {}
    for argument in arguments:
        descriptor = argument.descriptor
        if descriptor.source == "context":
            values[descriptor.name] = context
            continue
        chain = PipeChain(shared_pipes + argument.pipes)
        with start_span("pipe", **{"gantry.argument": descriptor.name}):
            try:
                value, piped = argument.extract(context)
                if piped:
                    value = await chain.apply(value, descriptor)
            except Exception:
                increment_metric("pipe_failures_total")
                raise
        values[descriptor.name] = value
    return values


__all__ = [
    "Body",
    "BoundArgument",
    "Ctx",
    "Custom",
    "Header",
    "Marker",
    "Param",
    "Query",
    "bind_arguments",
    "resolve_arguments",
]
