"""OpenTelemetry tracing initialization for the calendar service."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

_TRACER_NAME = "jobai_calendar"

# True once the global TracerProvider has been installed by this module.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, installs a TracerProvider with
    an OTLP gRPC exporter on the first call; later calls reuse it.  Without
    the variable the global no-op tracer is returned.

    Args:
        service_name: Value for the ``service.name`` resource attribute.

    Returns:
        A Tracer instance (real or no-op depending on config)
    """
    global _tracer_provider_installed  # noqa: PLW0603

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(_TRACER_NAME)

    if _tracer_provider_installed:
        logger.debug("TracerProvider already initialized; reusing it")
        return trace.get_tracer(_TRACER_NAME)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: service=%s, endpoint=%s", service_name, endpoint)

    return trace.get_tracer(_TRACER_NAME)


def get_tracer() -> trace.Tracer:
    """Tracer for calendar spans from the current provider (no-op before init)."""
    return trace.get_tracer(_TRACER_NAME)
