"""Optional OpenTelemetry tracing.

Tracing is enabled only when OTEL_EXPORTER_OTLP_ENDPOINT is configured,
otherwise spans are no-ops.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "planning-poker")

_tracer = None
_telemetry_enabled = False


def is_telemetry_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return _telemetry_enabled


def setup_telemetry() -> bool:
    """Initialize OpenTelemetry tracing with an OTLP exporter.

    Returns:
        True if telemetry was configured, False otherwise.
    """
    global _tracer, _telemetry_enabled

    if not OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled: OTEL_EXPORTER_OTLP_ENDPOINT not configured")
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider = TracerProvider(
            resource=Resource.create({"service.name": OTEL_SERVICE_NAME})
        )
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT))
        )
        trace.set_tracer_provider(provider)

        _tracer = trace.get_tracer("planning_poker")
        _telemetry_enabled = True

        logger.info(
            "OpenTelemetry initialized. Endpoint: %s, Service: %s",
            OTEL_EXPORTER_OTLP_ENDPOINT,
            OTEL_SERVICE_NAME,
        )
        return True

    except ImportError as e:
        logger.warning("OpenTelemetry packages not available: %s", e)
        return False


class _NoOpSpan:
    """Span stand-in used while tracing is disabled."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        pass

    def record_exception(self, exception: BaseException) -> None:
        pass


def instrument_httpx() -> None:
    """Instrument httpx clients (Teamwork API calls) when tracing is on."""
    if not _telemetry_enabled:
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.info("httpx instrumentation enabled")
    except ImportError:
        logger.warning("httpx instrumentation package not available")


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Any]:
    """Open a span around a block, or a no-op span when tracing is disabled.

    Exceptions raised in the block are recorded on the span and re-raised.
    """
    if not _telemetry_enabled or _tracer is None:
        yield _NoOpSpan()
        return

    with _tracer.start_as_current_span(name) as span:
        if attributes:
            span.set_attributes(attributes)
        yield span
