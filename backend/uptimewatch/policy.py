"""Probe scheduling policy shared by the scheduler, repositories and schemas."""
from datetime import datetime, timedelta
from typing import Optional

MIN_INTERVAL_SECONDS = 30
MAX_INTERVAL_SECONDS = 3600
MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 120
MAX_REDIRECTS = 5


def is_monitor_due(
    interval_seconds: int,
    last_check_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Determine if a monitor should be probed now.

    A monitor that has never been checked is always due, so a newly created
    monitor gets its first scheduled probe on the next tick.
    """
    if last_check_at is None:
        return True
    return now >= last_check_at + timedelta(seconds=interval_seconds)


def is_probeable(status: str, is_active: bool) -> bool:
    """Paused or deactivated monitors are never probed or escalated."""
    return bool(is_active) and status != "paused"
