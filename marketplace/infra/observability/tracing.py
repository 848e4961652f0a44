"""
OpenTelemetry Distributed Tracing

Spans are opened around every unit of work in the order, inventory and review
services. Without ``setup_tracing`` the API falls back to a no-op provider, so
the spans cost nothing in tests.
"""

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_initialized = False


def setup_tracing(service_name: str = "marketplace-core", enable: bool = True, exporter=None) -> None:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        enable: Enable/disable tracing
        exporter: Span exporter (defaults to the console exporter)
    """
    global _initialized

    if _initialized:
        logger.warning("Tracing already initialized. Skipping.")
        return

    if not enable:
        logger.info("Tracing disabled via configuration")
        return

    resource = Resource(attributes={SERVICE_NAME: service_name})
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(tracer_provider)

    _initialized = True
    logger.info(f"OpenTelemetry tracing initialized for service: {service_name}")


def add_span_attributes(span: trace.Span, **attributes) -> None:
    """Add custom attributes to a span, stringifying values."""
    for key, value in attributes.items():
        span.set_attribute(key, str(value))


def get_tracer(name: Optional[str] = None) -> trace.Tracer:
    return trace.get_tracer(name or "marketplace")


tracer = get_tracer("marketplace")
