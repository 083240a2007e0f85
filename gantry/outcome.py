"""Tagged stage results: continue, short-circuit or fail."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

if TYPE_CHECKING:  # pragma: no cover
    from .http import Response


@dataclass(frozen=True)
class Continue:
    """Proceed to the next stage carrying *value*."""

    value: Any = None


@dataclass(frozen=True)
class ShortCircuit:
    """Stop the pipeline and answer with *response*.

    ``response=None`` means "send what was written to the response writer".
    """

    response: "Response | None" = None


@dataclass(frozen=True)
class Fail:
    """Abort the pipeline with *error*; exception filters take over."""

    error: BaseException


Outcome = Union[Continue, ShortCircuit, Fail]


def as_outcome(value: Any) -> Outcome:
    """Wrap a plain unit return value; explicit outcomes pass through."""
    if isinstance(value, (Continue, ShortCircuit, Fail)):
        return value
    return Continue(value)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_unit(func: Callable[..., Any | Awaitable[Any]], *args: Any) -> Outcome:
    """Call a sync or async unit and fold its result or error into an Outcome."""
    try:
        result = await maybe_await(func(*args))
    except Exception as exc:  # noqa: BLE001 - converted to Fail, never swallowed
        return Fail(exc)
    return as_outcome(result)


def unwrap(outcome: Outcome) -> Any:
    """Turn an Outcome back into a value, raising the error of a ``Fail``."""
    if isinstance(outcome, Fail):
        raise outcome.error
    if isinstance(outcome, ShortCircuit):
        return outcome.response
    return outcome.value


__all__ = [
    "Continue",
    "Fail",
    "Outcome",
    "ShortCircuit",
    "as_outcome",
    "maybe_await",
    "run_unit",
    "unwrap",
]
