"""Argument pipes: per-parameter transformation and validation."""

from __future__ import annotations

import enum
import inspect
import uuid
from dataclasses import dataclass, is_dataclass
from typing import Any, Awaitable, Callable, Iterable, get_args, get_origin

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .outcome import Fail, ShortCircuit, as_outcome

_TYPE_ADAPTER_CACHE: dict[Any, TypeAdapter] = {}


@dataclass(frozen=True)
class ArgumentDescriptor:
    """Where a handler argument comes from and how it is declared."""

    name: str
    source: str
    key: str | None = None
    annotation: Any = inspect.Parameter.empty

    @property
    def loc(self) -> list[Any]:
        if self.source == "body":
            return ["body"] if self.key is None else ["body", self.key]
        return [self.source, self.key or self.name]


class Pipe:
    """Transform or validate one argument; raise ``ValidationError`` to reject."""

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> Any | Awaitable[Any]:
        return value

    def __repr__(self) -> str:
        return type(self).__name__


class FunctionPipe(Pipe):
    def __init__(self, func: Callable[[Any, ArgumentDescriptor], Any]) -> None:
        self.func = func

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> Any:
        return self.func(value, descriptor)

    def __repr__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


def as_pipe(unit: Pipe | Callable[..., Any]) -> Pipe:
    if isinstance(unit, Pipe):
        return unit
    if isinstance(unit, type) and issubclass(unit, Pipe):
        return unit()
    if callable(unit):
        return FunctionPipe(unit)
    raise TypeError(f"{unit!r} is not a pipe")


def _settle(result: Any) -> Any:
    """Unwrap a pipe result: ``Fail`` raises its error, ``Continue`` yields its value."""
    outcome = as_outcome(result)
    if isinstance(outcome, Fail):
        raise outcome.error
    if isinstance(outcome, ShortCircuit):
        raise TypeError("pipes cannot short-circuit the request")
    return outcome.value


def _fail(descriptor: ArgumentDescriptor, msg: str, typ: str, value: Any) -> ValidationError:
    return ValidationError(
        f"Validation failed ({msg})",
        loc=descriptor.loc,
        typ=typ,
        input_value=value,
    )


class ParseIntPipe(Pipe):
    """Coerce to ``int``; ``"42"`` becomes ``42``."""

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> int:
        if isinstance(value, bool):
            raise _fail(descriptor, "numeric string is expected", "int_parsing", value)
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            raise _fail(descriptor, "numeric string is expected", "int_parsing", value) from None


class ParseFloatPipe(Pipe):
    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise _fail(descriptor, "numeric string is expected", "float_parsing", value) from None


class ParseBoolPipe(Pipe):
    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> bool:
        if isinstance(value, bool):
            return value
        normalized = str(value).strip().lower()
        if normalized in {"1", "true", "on", "yes"}:
            return True
        if normalized in {"0", "false", "off", "no"}:
            return False
        raise _fail(descriptor, "boolean string is expected", "bool_parsing", value)


class ParseUUIDPipe(Pipe):
    def __init__(self, version: int | None = None) -> None:
        self.version = version

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> uuid.UUID:
        try:
            parsed = uuid.UUID(str(value))
        except ValueError:
            raise _fail(descriptor, "uuid is expected", "uuid_parsing", value) from None
        if self.version is not None and parsed.version != self.version:
            raise _fail(descriptor, f"uuid v{self.version} is expected", "uuid_version", value)
        return parsed


class ParseEnumPipe(Pipe):
    def __init__(self, enum_type: type[enum.Enum]) -> None:
        self.enum_type = enum_type

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> enum.Enum:
        try:
            return self.enum_type(value)
        except ValueError:
            allowed = ", ".join(str(member.value) for member in self.enum_type)
            raise _fail(descriptor, f"one of: {allowed}", "enum", value) from None


class ParseArrayPipe(Pipe):
    """Split a delimited string (or accept a list) and coerce every item.

    When an item pipe is async the result is awaitable and the pipe chain
    awaits it.
    """

    def __init__(
        self, items: Pipe | Callable[..., Any] | None = None, separator: str = ","
    ) -> None:
        self.items = as_pipe(items) if items is not None else None
        self.separator = separator

    def transform(
        self, value: Any, descriptor: ArgumentDescriptor
    ) -> list[Any] | Awaitable[list[Any]]:
        if isinstance(value, str):
            raw = [part.strip() for part in value.split(self.separator) if part.strip()]
        elif isinstance(value, (list, tuple)):
            raw = list(value)
        else:
            raise _fail(descriptor, "array is expected", "list_type", value)
        if self.items is None:
            return raw
        result = []
        for index, item in enumerate(raw):
            item_descriptor = ArgumentDescriptor(
                f"{descriptor.name}[{index}]",
                descriptor.source,
                descriptor.key,
                descriptor.annotation,
            )
            result.append(self.items.transform(item, item_descriptor))
        if any(inspect.isawaitable(item) for item in result):
            return self._gather(result)
        return [_settle(item) for item in result]

    @staticmethod
    async def _gather(results: list[Any]) -> list[Any]:
        settled = []
        for item in results:
            if inspect.isawaitable(item):
                item = await item
            settled.append(_settle(item))
        return settled


class DefaultValuePipe(Pipe):
    """Replace a missing value (``None`` or empty string) with *default*."""

    def __init__(self, default: Any) -> None:
        self.default = default

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> Any:
        if value is None or value == "":
            return self.default
        return value


def _get_type_adapter(tp: Any) -> TypeAdapter:
    """Return a cached ``TypeAdapter`` for *tp*."""

    adapter = _TYPE_ADAPTER_CACHE.get(tp)
    if adapter is None:
        adapter = TypeAdapter(tp)
        _TYPE_ADAPTER_CACHE[tp] = adapter
    return adapter


def _normalise_errors(exc: PydanticValidationError, base_loc: list[Any]) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    for err in exc.errors():
        err_loc = [part for part in err.get("loc", ()) if part != "__root__"]
        errors.append(
            {
                "loc": base_loc + err_loc,
                "msg": err.get("msg", ""),
                "type": err.get("type", "value_error"),
                "input": err.get("input"),
            }
        )
    return errors


def _field_names(tp: Any) -> set[str] | None:
    if inspect.isclass(tp) and issubclass(tp, BaseModel):
        return set(tp.model_fields)
    if is_dataclass(tp):
        return {f for f in getattr(tp, "__dataclass_fields__", {})}
    return None


class ValidationPipe(Pipe):
    """Class-based validation against the parameter's annotation.

    The annotation (pydantic model, dataclass or any type pydantic accepts)
    drives validation. ``whitelist`` strips unknown keys from mapping input,
    ``forbid_unknown`` rejects them instead, and ``transform=False`` returns
    the original input once it validates.
    """

    def __init__(
        self,
        *,
        whitelist: bool = False,
        forbid_unknown: bool = False,
        transform: bool = True,
    ) -> None:
        self.whitelist = whitelist
        self.forbid_unknown = forbid_unknown
        self.transform_value = transform

    def _target(self, descriptor: ArgumentDescriptor) -> Any:
        return descriptor.annotation

    def transform(self, value: Any, descriptor: ArgumentDescriptor) -> Any:
        target = self._target(descriptor)
        if target is inspect.Parameter.empty or target is Any:
            return value
        names = _field_names(target)
        if names is not None and isinstance(value, dict):
            unknown = sorted(set(value) - names)
            if unknown and self.forbid_unknown:
                raise ValidationError(
                    errors=[
                        {
                            "loc": descriptor.loc + [key],
                            "msg": f"property {key} should not exist",
                            "type": "extra_forbidden",
                            "input": value[key],
                        }
                        for key in unknown
                    ]
                )
            if unknown and self.whitelist:
                value = {k: v for k, v in value.items() if k in names}
        try:
            validated = _get_type_adapter(target).validate_python(value)
        except PydanticValidationError as exc:
            raise ValidationError(errors=_normalise_errors(exc, descriptor.loc)) from exc
        return validated if self.transform_value else value


class SchemaValidationPipe(ValidationPipe):
    """Schema-based validation against an explicitly supplied schema type.

    Use instead of :class:`ValidationPipe` when the parameter is untyped or
    the wire shape differs from the annotation.
    """

    def __init__(self, schema: Any, **options: Any) -> None:
        super().__init__(**options)
        self.schema = schema

    def _target(self, descriptor: ArgumentDescriptor) -> Any:
        return self.schema

    def __repr__(self) -> str:
        return f"SchemaValidationPipe({getattr(self.schema, '__name__', self.schema)!s})"


class PipeChain:
    """Pipes applied to one argument, in order."""

    def __init__(self, pipes: Iterable[Pipe]) -> None:
        self.pipes: tuple[Pipe, ...] = tuple(pipes)

    async def apply(self, value: Any, descriptor: ArgumentDescriptor) -> Any:
        for pipe in self.pipes:
            result = pipe.transform(value, descriptor)
            if inspect.isawaitable(result):
                result = await result
            value = _settle(result)
        return value

    def __len__(self) -> int:
        return len(self.pipes)


def is_model_annotation(annotation: Any) -> bool:
    """Return ``True`` for annotations that bind to the request body."""
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return True
    if is_dataclass(annotation) and isinstance(annotation, type):
        return True
    origin = get_origin(annotation)
    return origin is not None and any(is_model_annotation(arg) for arg in get_args(annotation))


__all__ = [
    "ArgumentDescriptor",
    "DefaultValuePipe",
    "FunctionPipe",
    "ParseArrayPipe",
    "ParseBoolPipe",
    "ParseEnumPipe",
    "ParseFloatPipe",
    "ParseIntPipe",
    "ParseUUIDPipe",
    "Pipe",
    "PipeChain",
    "SchemaValidationPipe",
    "ValidationPipe",
    "as_pipe",
    "is_model_annotation",
]
