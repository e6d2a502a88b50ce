"""OpenTelemetry tracing for laneq.

Provides tracer setup with OTLP export. Failed job attempts and backend
errors are recorded as exceptions on spans by the telemetry sink, so any
OpenTelemetry-compatible collector doubles as the error tracker.

Usage:
    from laneq.observability.tracing import setup_tracing, get_tracer

    setup_tracing(settings, lane="production")
    tracer = get_tracer(__name__)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

if TYPE_CHECKING:
    from laneq.config import Settings

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_initialized = False


def setup_tracing(settings: Settings, lane: str | None = None) -> None:
    """Initialize OpenTelemetry tracing.

    Configures a tracer provider tagged with the deployment environment and
    lane, exporting over OTLP when an endpoint is configured.
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    if not settings.enable_tracing:
        logger.info("Tracing is disabled")
        _initialized = True
        return

    attributes = {
        "service.name": settings.app_name,
        "service.instance.id": settings.instance_id,
        "deployment.environment": settings.env,
    }
    if lane:
        attributes["laneq.lane"] = lane

    _tracer_provider = TracerProvider(resource=Resource.create(attributes))

    if settings.otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info(f"OTLP tracing enabled: {settings.otlp_endpoint}")
        except ImportError:
            logger.warning(
                "opentelemetry-exporter-otlp-proto-grpc not installed, OTLP export disabled"
            )

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True
    logger.info("OpenTelemetry tracing initialized")


def shutdown_tracing() -> None:
    """Flush pending spans and shut the provider down."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None
    _initialized = False


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)
