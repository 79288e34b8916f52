"""
Distributed Tracing with OpenTelemetry.

Disabled entirely when TRACING_ENABLED is false; the helpers then become no-ops
(trace_operation still yields a non-recording span).
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode
from sqlalchemy.ext.asyncio import AsyncEngine

from civic_rewards.config import settings

_tracer = trace.get_tracer("civic_rewards")


def setup_tracing() -> None:
    """Install a TracerProvider exporting to the OTLP collector."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "deployment.environment": settings.deployment_environment,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """Trace every HTTP request. Call once, after the app is created."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Trace every query issued through `engine`."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a named span. None-valued attributes are skipped and
    non-primitive values are stringified.

        with trace_operation("redemption.redeem", user_id=str(user_id)) as span:
            ...
    """
    with _tracer.start_as_current_span(
        operation_name, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            if value is None:
                continue
            span.set_attribute(
                key, value if isinstance(value, (str, int, float, bool)) else str(value)
            )
        try:
            yield span
        except BaseException as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
