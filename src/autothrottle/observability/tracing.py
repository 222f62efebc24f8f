from __future__ import annotations

"""
autothrottle.observability.tracing
==================================

OpenTelemetry bootstrap and a `traced()` decorator.

Spans are created through the global tracer provider; until `setup_tracing()`
runs that provider is the API's no-op one, so instrumented code costs nothing
in tests and in deployments without a collector.

Usage:
    setup_tracing(service_name="autothrottle", otlp_endpoint="http://otelcol:4317")

    @traced("autothrottle.tick")
    async def tick(): ...
"""

import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from ..core.log import get_logger

__all__ = ["setup_tracing", "traced"]

_log = get_logger("observability.tracing")
_T = TypeVar("_T")


def setup_tracing(
    *,
    service_name: str,
    otlp_endpoint: str | None = None,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install a global TracerProvider.

    otlp_endpoint: OTLP gRPC collector (batched export).
    exporter:      extra exporter attached synchronously (tests use InMemorySpanExporter).

    OpenTelemetry allows the global provider to be set once per process; later
    calls return a new provider that is not installed globally.
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))
        _log.info("otel tracing configured", event="tracing.otlp", endpoint=otlp_endpoint)
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def traced(name: str) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
    """Run the decorated coroutine function inside a span called `name`."""

    def _decorator(func: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        @functools.wraps(func)
        async def _wrapped(*args: Any, **kwargs: Any) -> _T:
            tracer = trace.get_tracer("autothrottle")
            with tracer.start_as_current_span(name):
                return await func(*args, **kwargs)

        return _wrapped

    return _decorator
