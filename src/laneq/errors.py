"""Error taxonomy for laneq.

Configuration errors (duplicate or unknown names, bad cron expressions) are
raised synchronously to the caller and never retried. Handler errors are
caught by the worker pool and retried unless they are fatal.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base exception for queue errors."""

    pass


class ConfigurationError(QueueError):
    """Invalid job or cron registration."""

    pass


class DuplicateNameError(ConfigurationError):
    """A job or cron name was registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Job name already registered: {name}")
        self.name = name


class UnknownJobError(ConfigurationError, LookupError):
    """No handler is registered under the given name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown job: {name}")
        self.name = name


class InvalidCronError(ConfigurationError, ValueError):
    """Cron expression could not be parsed."""

    pass


class InvalidPayloadError(QueueError, TypeError):
    """Job payload is not JSON serializable."""

    pass


class FatalJobError(QueueError):
    """Raised by a handler to fail the job without further retries."""

    pass


class StalledJobError(QueueError):
    """Job lost its lease more often than allowed."""

    pass


class BackendError(QueueError):
    """Queue backend is unreachable or rejected a command."""

    pass
