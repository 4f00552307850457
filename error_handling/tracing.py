"""
OpenTelemetry configuration and utilities for distributed tracing.
"""
import logging
import os
import sys
from typing import Optional
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, DEPLOYMENT_ENVIRONMENT
from opentelemetry.trace.status import Status, StatusCode

logger = logging.getLogger("mcp_demo.error_handling")


def setup_tracing(
    service_name: str = "add-server",
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    service_version: str = "1.0.0",
) -> trace.Tracer:
    """
    Configure OpenTelemetry tracing for the application.

    Every span is sampled. Spans go to the OTLP collector when an endpoint
    is configured, and to the console in development when
    ``ENABLE_CONSOLE_EXPORTERS=true``.

    The global tracer provider can only be set once per process, so later
    calls (one per app built) reuse the provider that is already installed.

    Args:
        service_name: Name of the service for tracing
        environment: Deployment environment (e.g., 'development', 'production')
        otlp_endpoint: OTLP endpoint URL (e.g., 'http://localhost:4317')
        service_version: Version of the service
    """
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        logger.debug("Tracer provider already installed; reusing it for %s", service_name)
        return trace.get_tracer(service_name, service_version)

    # Use environment variables if not provided
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    resource = Resource.create({
        SERVICE_NAME: service_name,
        DEPLOYMENT_ENVIRONMENT: environment,
        "service.version": service_version,
    })

    provider = TracerProvider(resource=resource)

    # Console exporter is for local debugging only and never runs under tests
    is_test = 'pytest' in sys.modules
    enable_console = os.getenv("ENABLE_CONSOLE_EXPORTERS", "false").lower() == "true"
    if environment == "development" and not is_test and enable_console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        )

    trace.set_tracer_provider(provider)

    return trace.get_tracer(service_name, service_version)


def instrument_fastapi(app):
    """Instrument a FastAPI application and outgoing httpx calls for tracing."""
    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    return app


def get_tracer(name: str = None) -> trace.Tracer:
    """Get a tracer instance."""
    return trace.get_tracer(name or __name__)


def record_span_error(span: trace.Span, exc: BaseException) -> None:
    """Attach an exception to a span and mark the span as failed."""
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


__all__ = [
    'setup_tracing',
    'get_tracer',
    'instrument_fastapi',
    'record_span_error',
]
