"""OpenTelemetry tracing for signing and verifying identity proofs.

Spans are exported over OTLP with X-Ray compatible trace ids, so a login
request, its STS replay and the outbound httpx call show up as one trace.
Configuration comes from ``AuthPayloadConfig`` unless overridden by the caller.
"""

import asyncio
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator, Optional, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.aws import AwsXRayPropagator
from opentelemetry.sdk.extension.aws.trace import AwsXRayIdGenerator
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from .config import AuthPayloadConfig, config as default_config

P = ParamSpec("P")
T = TypeVar("T")

_tracer: Optional[trace.Tracer] = None
_initialized = False

# Span attribute keys for identity verification
IDENTITY_ATTRIBUTES = {
    "sts_host": "aws.sts.host",
    "region": "aws.region",
    "account_id": "aws.account_id",
    "arn": "aws.principal_arn",
    "outcome": "identity.outcome",
}


def _span_processors(otlp_endpoint: str, console: bool) -> Iterator[SpanProcessor]:
    if otlp_endpoint:
        yield BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    if console:
        yield BatchSpanProcessor(ConsoleSpanExporter())


def init_tracing(
    service_name: str = "aws-auth-payload",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
    settings: Optional[AuthPayloadConfig] = None,
) -> trace.Tracer:
    """Install the global tracer provider and return this package's tracer.

    Args:
        service_name: ``service.name`` resource attribute
        otlp_endpoint: OTLP gRPC collector, e.g. "http://localhost:4317".
                       Falls back to ``settings.otel_endpoint``.
        enable_console_export: Also print finished spans to stdout
        settings: Configuration to read defaults from (module config if None)

    Returns:
        Tracer instance. Repeated calls return the first tracer.
    """
    global _tracer, _initialized

    if _initialized and _tracer is not None:
        return _tracer

    settings = settings or default_config
    provider = TracerProvider(
        resource=Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: "0.1.0",
            "deployment.environment": settings.environment,
        }),
        id_generator=AwsXRayIdGenerator(),
    )
    set_global_textmap(AwsXRayPropagator())

    console = enable_console_export or settings.otel_console_export
    for processor in _span_processors(otlp_endpoint or settings.otel_endpoint, console):
        provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name)
    _initialized = True

    _instrument_httpx()
    return _tracer


def _instrument_httpx() -> None:
    """Trace outbound STS replays made through httpx."""
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        return  # installed with the "instrumentation" extra
    HTTPXClientInstrumentor().instrument()


def get_tracer() -> trace.Tracer:
    """Return the package tracer, initializing tracing with defaults if needed."""
    return _tracer if _tracer is not None else init_tracing()


@contextmanager
def _status_span(span_name: str, attributes: Optional[dict[str, Any]]) -> Iterator[trace.Span]:
    with get_tracer().start_as_current_span(
        span_name,
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        span.set_status(Status(StatusCode.OK))


def traced(
    name: Optional[str] = None,
    attributes: Optional[dict[str, Any]] = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Run the decorated function (sync or async) inside a span.

    Args:
        name: Span name (defaults to the function's qualified name)
        attributes: Static attributes set on every span
    """
    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        span_name = name or func.__qualname__

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                with _status_span(span_name, attributes):
                    return await func(*args, **kwargs)  # type: ignore

            return async_wrapper  # type: ignore

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            with _status_span(span_name, attributes):
                return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def add_identity_span_attributes(span: trace.Span, **values: Optional[str]) -> None:
    """Set identity attributes on ``span``, skipping empty values.

    Accepted keywords are the keys of ``IDENTITY_ATTRIBUTES``:
    ``sts_host``, ``region``, ``account_id``, ``arn`` and ``outcome``.
    """
    for key, value in values.items():
        if key not in IDENTITY_ATTRIBUTES:
            raise TypeError(f"Unknown identity span attribute: {key}")
        if value:
            span.set_attribute(IDENTITY_ATTRIBUTES[key], value)
