"""Observability module for laneq.

Provides structured logging, tracing, metrics and error telemetry:
- JSON structured logging with job context
- OpenTelemetry tracing with OTLP export
- Prometheus metrics
- Bounded fire-and-forget failure reporting
"""

from laneq.observability.events import JobEventSink, describe_error
from laneq.observability.logging import LogContext, configure_logging, log
from laneq.observability.metrics import get_metrics, metrics_registry, start_metrics_server
from laneq.observability.telemetry import TelemetrySink, report_to_tracer
from laneq.observability.tracing import get_tracer, setup_tracing, shutdown_tracing

__all__ = [
    # Logging
    "configure_logging",
    "log",
    "LogContext",
    # Tracing
    "setup_tracing",
    "shutdown_tracing",
    "get_tracer",
    # Metrics
    "metrics_registry",
    "get_metrics",
    "start_metrics_server",
    # Events
    "JobEventSink",
    "TelemetrySink",
    "describe_error",
    "report_to_tracer",
]
