"""Job lifecycle events: structured logs, metrics and error telemetry.

Every event writes one log line through the log() sink with stable field
names (id, name, error, ...). Only error-class events are forwarded to the
telemetry sink. None of the methods raise.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from laneq.observability.logging import log
from laneq.observability.metrics import get_metrics

if TYPE_CHECKING:
    from laneq.jobs.job import Job
    from laneq.observability.telemetry import TelemetrySink

logger = logging.getLogger(__name__)

LogSink = Callable[[int, str, Mapping[str, Any]], None]


def describe_error(error: BaseException) -> str:
    """Stable one-line rendering of an exception."""
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class JobEventSink:
    """Consumer of completion, failure and backend-error events."""

    def __init__(
        self,
        telemetry: TelemetrySink | None = None,
        lane: str = "",
        log_sink: LogSink = log,
    ) -> None:
        self.telemetry = telemetry
        self.lane = lane
        self.log_sink = log_sink
        self.metrics = get_metrics()

    def _job_fields(self, job: Job) -> dict[str, Any]:
        return {
            "id": job.id,
            "name": job.name,
            "lane": job.lane,
            "attempt": job.attempt,
            "max_attempts": job.max_attempts,
        }

    def _emit(
        self,
        level: int,
        message: str,
        fields: dict[str, Any],
        error: BaseException | None = None,
    ) -> None:
        try:
            self.log_sink(level, message, fields)
        except Exception:
            logger.debug("Log sink failed", exc_info=True)

        if error is not None and self.telemetry is not None:
            try:
                self.telemetry.report_failure(error, fields)
            except Exception:
                logger.debug("Telemetry sink failed", exc_info=True)

    def completed(self, job: Job, duration: float | None = None) -> None:
        fields = self._job_fields(job)
        if duration is not None:
            fields["duration_ms"] = round(duration * 1000, 2)
        self._emit(logging.INFO, "Job completed", fields)

        try:
            self.metrics.jobs_completed_total.labels(name=job.name, lane=job.lane).inc()
        except Exception:
            logger.debug("Metrics update failed", exc_info=True)

    def retrying(self, job: Job, error: BaseException, delay: int) -> None:
        """A failed attempt that will be retried after `delay` ms."""
        fields = self._job_fields(job)
        fields["error"] = describe_error(error)
        fields["retry_in_ms"] = delay
        self._emit(logging.WARNING, "Job attempt failed", fields, error)

        try:
            self.metrics.jobs_retried_total.labels(name=job.name, lane=job.lane).inc()
        except Exception:
            logger.debug("Metrics update failed", exc_info=True)

    def failed(self, job: Job, error: BaseException) -> None:
        """A job reached its terminal failed state."""
        fields = self._job_fields(job)
        fields["error"] = describe_error(error)
        self._emit(logging.ERROR, "Job failed", fields, error)

        try:
            self.metrics.jobs_failed_total.labels(name=job.name, lane=job.lane).inc()
        except Exception:
            logger.debug("Metrics update failed", exc_info=True)

    def stalled(self, job_ids: list[str]) -> None:
        """Jobs whose lease expired and were returned to the queue."""
        self._emit(
            logging.WARNING,
            "Stalled jobs requeued",
            {"ids": job_ids, "count": len(job_ids), "lane": self.lane},
        )

    def backend_error(self, error: BaseException) -> None:
        fields = {"error": describe_error(error), "lane": self.lane}
        self._emit(logging.ERROR, "Job error", fields, error)

        try:
            self.metrics.backend_errors_total.labels(lane=self.lane).inc()
        except Exception:
            logger.debug("Metrics update failed", exc_info=True)
