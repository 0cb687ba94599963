"""
OpenTelemetry spans for ledger operations.

Off by default. With TRACING_ENABLED=true the service exports to the OTLP
collector, and promotion creation and view settlement each get a span
nested under the FastAPI request span, with SQLAlchemy query spans below.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from vidgro.config import settings

_TRACER_NAME = "vidgro.ledger"


def setup_tracing() -> None:
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.service_name, "service.version": settings.api_version}
        ),
        sampler=TraceIdRatioBased(settings.trace_sample_rate),
    )
    exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Query spans for the write engine; the instrumentor needs the sync engine."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def _set_attributes(span: Span, attributes: dict[str, Any]) -> None:
    # UUIDs and enums arrive as-is from callers; OTLP only takes primitives
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))


class trace_operation:
    """
    Span around one ledger operation.

    A failure marks the span as errored and records the exception; the
    exception itself still propagates to the caller.

        with trace_operation("view_settlement", promotion_id=str(promotion_id)) as span:
            ...
            span.set_attribute("outcome", result.outcome.value)
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.operation_name = operation_name
        self.attributes = attributes
        self._cm: Any = None

    def __enter__(self) -> Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._cm = tracer.start_as_current_span(
            self.operation_name, record_exception=False, set_status_on_exception=False
        )
        span: Span = self._cm.__enter__()
        _set_attributes(span, self.attributes)
        return span

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        if exc_val is not None:
            span = trace.get_current_span()
            span.set_status(Status(StatusCode.ERROR, str(exc_val)))
            span.record_exception(exc_val)
        self._cm.__exit__(exc_type, exc_val, exc_tb)
