"""Prometheus metrics for laneq.

Provides job processing metrics:
- Completed, failed and retried jobs by name
- Backend errors
- Jobs currently executing
- Handler duration

Usage:
    from laneq.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.jobs_completed_total.labels(name="send_welcome", lane="production").inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        """No-op."""
        pass

    def dec(self, amount: float = 1) -> None:
        """No-op."""
        pass

    def observe(self, value: float) -> None:
        """No-op."""
        pass


_NOOP = NoOpMetric()


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    jobs_completed_total: Any = _NOOP
    jobs_failed_total: Any = _NOOP
    jobs_retried_total: Any = _NOOP
    backend_errors_total: Any = _NOOP
    jobs_active: Any = _NOOP
    job_duration_seconds: Any = _NOOP

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _enabled: bool = field(default=False, repr=False)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def initialize(self, enabled: bool = True) -> None:
        """Create the Prometheus collectors (once per process)."""
        if self._initialized:
            return
        self._initialized = True

        if not enabled:
            logger.info("Metrics are disabled")
            return

        self.jobs_completed_total = Counter(
            "laneq_jobs_completed_total",
            "Jobs completed successfully",
            ["name", "lane"],
            registry=REGISTRY,
        )
        self.jobs_failed_total = Counter(
            "laneq_jobs_failed_total",
            "Jobs failed terminally",
            ["name", "lane"],
            registry=REGISTRY,
        )
        self.jobs_retried_total = Counter(
            "laneq_jobs_retried_total",
            "Failed job attempts scheduled for retry",
            ["name", "lane"],
            registry=REGISTRY,
        )
        self.backend_errors_total = Counter(
            "laneq_backend_errors_total",
            "Queue backend errors",
            ["lane"],
            registry=REGISTRY,
        )
        self.jobs_active = Gauge(
            "laneq_jobs_active",
            "Jobs currently executing",
            ["lane"],
            registry=REGISTRY,
        )
        self.job_duration_seconds = Histogram(
            "laneq_job_duration_seconds",
            "Handler execution time in seconds",
            ["name", "lane"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
            registry=REGISTRY,
        )

        self._enabled = True
        logger.info("Prometheus metrics initialized")


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Collectors stay no-ops until initialize() is called.
    """
    return metrics_registry


def start_metrics_server(port: int) -> None:
    """Expose /metrics on the given port."""
    start_http_server(port)
    logger.info(f"Metrics server listening on :{port}")
