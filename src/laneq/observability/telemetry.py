"""Fire-and-forget error telemetry.

Reports are queued on a bounded asyncio.Queue and delivered by a background
task, so a slow or failing collector never delays job acknowledgement. When
the queue is full new reports are dropped and counted.

The default reporter records the exception on an OpenTelemetry span.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Mapping

from opentelemetry.trace import Status, StatusCode

from laneq.observability.tracing import get_tracer

logger = logging.getLogger(__name__)

Reporter = Callable[[BaseException, Mapping[str, Any]], Awaitable[None] | None]

DEFAULT_QUEUE_SIZE = 1000


def report_to_tracer(error: BaseException, context: Mapping[str, Any]) -> None:
    """Record an exception on a dedicated span."""
    tracer = get_tracer("laneq.telemetry")
    attributes = {f"laneq.{key}": str(value) for key, value in context.items()}
    with tracer.start_as_current_span("laneq.failure", attributes=attributes) as span:
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error)))


class TelemetrySink:
    """Bounded, non-blocking channel to an exception reporter."""

    def __init__(
        self,
        reporter: Reporter | None = None,
        max_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.reporter = reporter or report_to_tracer
        self.max_size = max_size
        self.dropped = 0
        self._queue: asyncio.Queue[tuple[BaseException, dict[str, Any]]] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Start delivering queued reports."""
        if self._task is not None:
            return
        self._queue = asyncio.Queue(maxsize=self.max_size)
        self._task = asyncio.create_task(self._drain(), name="laneq-telemetry")

    async def stop(self, timeout: float = 5.0) -> None:
        """Flush pending reports (bounded by timeout) and stop."""
        if self._task is None or self._queue is None:
            return

        with suppress(TimeoutError):
            await asyncio.wait_for(self._queue.join(), timeout=timeout)

        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._queue = None

    def report_failure(self, error: BaseException, context: Mapping[str, Any]) -> None:
        """Queue a report. Never blocks and never raises."""
        if self._queue is None:
            # Not started (producer-only process): deliver best effort inline
            if not inspect.iscoroutinefunction(self.reporter):
                self._deliver_sync(error, dict(context))
            return

        try:
            self._queue.put_nowait((error, dict(context)))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Telemetry queue full, report dropped ({self.dropped} total)")

    def _deliver_sync(self, error: BaseException, context: dict[str, Any]) -> None:
        try:
            self.reporter(error, context)
        except Exception:
            logger.warning("Telemetry reporter failed", exc_info=True)

    async def _drain(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            error, context = await queue.get()
            try:
                if inspect.iscoroutinefunction(self.reporter):
                    await self.reporter(error, context)
                else:
                    # Blocking reporters run off the event loop
                    result = await asyncio.to_thread(self.reporter, error, context)
                    if inspect.isawaitable(result):
                        await result
            except Exception:
                logger.warning("Telemetry reporter failed", exc_info=True)
            finally:
                queue.task_done()
