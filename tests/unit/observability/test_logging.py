"""Tests for structured logging."""

import json
import logging

from laneq.observability.logging import (
    EVENT_LOGGER,
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    job_id_var,
)


def make_record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(EVENT_LOGGER, logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_event_fields_are_top_level(self) -> None:
        """Fields passed to log() become top-level keys."""
        record = make_record("Job completed", fields={"id": "job-1", "name": "send_welcome"})

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Job completed"
        assert data["level"] == "INFO"
        assert data["id"] == "job-1"
        assert data["name"] == "send_welcome"
        assert "fields" not in data

    def test_job_context(self) -> None:
        """LogContext values are included while active."""
        formatter = JsonFormatter()

        with LogContext(job_id="job-1", job_name="send_welcome", lane="production"):
            data = json.loads(formatter.format(make_record("Sending email")))

        assert data["job_id"] == "job-1"
        assert data["job_name"] == "send_welcome"
        assert data["lane"] == "production"

    def test_unserializable_extra(self) -> None:
        """Extras that are not JSON are stringified."""
        record = make_record("Job completed", fields={"payload": object()})

        data = json.loads(JsonFormatter().format(record))

        assert data["payload"].startswith("<object object")


class TestConsoleFormatter:
    """Tests for ConsoleFormatter."""

    def test_fields_as_key_values(self) -> None:
        """Fields are rendered as key=value pairs."""
        record = make_record("Job failed", fields={"id": "job-1", "error": "boom"})

        line = ConsoleFormatter(use_colors=False).format(record)

        assert "Job failed" in line
        assert "id=job-1 error=boom" in line


class TestLogContext:
    """Tests for LogContext."""

    def test_restores_previous_values(self) -> None:
        """Context variables are reset on exit."""
        with LogContext(job_id="outer"):
            with LogContext(job_id="inner"):
                assert job_id_var.get() == "inner"
            assert job_id_var.get() == "outer"

        assert job_id_var.get() == ""
