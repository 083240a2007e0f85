"""Metrics registry and OpenTelemetry tracing for the request pipeline."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

_exporter_choice = os.getenv("OTEL_TRACES_EXPORTER", "inmemory")

if _exporter_choice == "console":
    _span_exporter: Any = ConsoleSpanExporter()
else:
    _span_exporter = InMemorySpanExporter()
_tracer_provider = TracerProvider()
_tracer_provider.add_span_processor(SimpleSpanProcessor(_span_exporter))
_tracer = _tracer_provider.get_tracer("gantry")

_metrics: Dict[str, float] = {}
_latency_histograms: Dict[str, list[float]] = defaultdict(list)
_metrics_lock = threading.Lock()

_OBSERVABILITY_LOGGER = logging.getLogger("gantry.observability")


def current_trace_span() -> Any | None:
    """Return the active span, or ``None`` outside of any recording span."""

    span = trace.get_current_span()
    if not span.get_span_context().is_valid:
        return None
    return span


@contextmanager
def start_span(name: str, **attributes: Any) -> Iterator[Any]:
    """Open a span named *name* as the current span."""

    with _tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span


def span_ids() -> dict[str, str]:
    """Return hex ``trace_id``/``span_id`` of the active span for log payloads."""

    span = current_trace_span()
    if span is None:
        return {}
    context = span.get_span_context()
    return {
        "trace_id": f"{context.trace_id:032x}",
        "span_id": f"{context.span_id:016x}",
    }


def get_traces() -> Iterable[Any]:
    """Return finished spans captured by the in-memory exporter."""

    if isinstance(_span_exporter, InMemorySpanExporter):
        return _span_exporter.get_finished_spans()
    return []


def clear_traces() -> None:
    """Drop spans captured so far."""

    if isinstance(_span_exporter, InMemorySpanExporter):
        _span_exporter.clear()


def get_exporter_choice() -> str:
    """Expose which tracing exporter is active."""

    return _exporter_choice


def record_metric(name: str, value: float) -> None:
    """Store *value* as the current value of metric *name*."""

    with _metrics_lock:
        _metrics[name] = value


def increment_metric(name: str, amount: float = 1.0) -> float:
    """Add *amount* to counter *name* and return the new value."""

    with _metrics_lock:
        value = _metrics.get(name, 0.0) + amount
        _metrics[name] = value
    return value


def get_metric(name: str) -> float:
    """Retrieve a recorded metric."""

    return _metrics.get(name, 0.0)


def record_latency(endpoint: str, duration_ms: float) -> None:
    """Record latency for *endpoint* in milliseconds."""

    with _metrics_lock:
        _latency_histograms[endpoint].append(duration_ms)


def get_latency_histogram(endpoint: str) -> Iterable[float]:
    """Return recorded latencies for *endpoint*."""

    return list(_latency_histograms.get(endpoint, []))


def reset_metrics() -> None:
    """Forget every recorded metric and latency sample."""

    with _metrics_lock:
        _metrics.clear()
        _latency_histograms.clear()


def prometheus_metrics() -> str:
    """Render recorded metrics in Prometheus text format."""

    return "\n".join(f"{k} {v}" for k, v in sorted(_metrics.items()))


def log_metrics_snapshot() -> None:
    """Emit every counter as one structured log entry."""

    _OBSERVABILITY_LOGGER.info(
        json.dumps({"event": "metrics", "metrics": dict(_metrics)}, separators=(",", ":"))
    )


__all__ = [
    "clear_traces",
    "current_trace_span",
    "get_exporter_choice",
    "get_latency_histogram",
    "get_metric",
    "get_traces",
    "increment_metric",
    "log_metrics_snapshot",
    "prometheus_metrics",
    "record_latency",
    "record_metric",
    "reset_metrics",
    "span_ids",
    "start_span",
]
