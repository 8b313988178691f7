"""Exception hierarchy for the monitoring core.

Transport and notification failures are never raised; they become failed
checks and log lines. What remains here are the errors callers must handle.
"""
from typing import Optional


class UptimeWatchError(Exception):
    """Base class for all uptimewatch errors."""

    recoverable = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class PersistenceError(UptimeWatchError):
    """A check or monitor write failed; the next due tick retries it."""

    recoverable = True


class MonitorNotFoundError(UptimeWatchError):
    """The monitor was deleted or never existed."""

    def __init__(self, monitor_id: int):
        super().__init__(f"Monitor {monitor_id} not found")
        self.monitor_id = monitor_id


class IncidentError(UptimeWatchError):
    """An incident update violates the status workflow."""
