"""Check recorder - persists probe outcomes and moves monitor health state.

Each call is one read-modify-write transaction on a single monitor. Callers
guarantee that no two recordings for the same monitor overlap (see the
scheduler's per-monitor lock); the monitor's version column turns any
violation of that into a PersistenceError instead of a lost update.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..database import async_session
from ..exceptions import MonitorNotFoundError, PersistenceError
from ..models import Check, Monitor
from ..repositories import CheckRepository, MonitorRepository
from ..utils.clock import minutes_between, utcnow
from ..utils.db_utils import retry_on_transient
from .prober import ProbeOutcome
from .realtime import RealtimePublisher

logger = logging.getLogger(__name__)


@dataclass
class StatusTransition:
    """New values for a monitor's live fields after one probe."""
    previous_status: str
    status: str
    last_check_at: datetime
    last_downtime_at: Optional[datetime]
    total_downtime: int
    escalation_level: int

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status


@dataclass
class RecordResult:
    monitor: Monitor
    check: Check
    transition: StatusTransition


def compute_transition(monitor, success: bool, now: datetime) -> StatusTransition:
    """Apply the up/down rules to a monitor's current live fields.

    - A failure marks the monitor down and starts the downtime clock only if
      it is not already running.
    - A success marks it up; if a downtime episode was open its whole minutes
      are added to the total, the clock is cleared and escalation resets.
    - A paused monitor keeps its status; only last_check_at moves.
    """
    previous = monitor.status
    last_downtime_at = monitor.last_downtime_at
    total_downtime = monitor.total_downtime or 0
    escalation_level = monitor.escalation_level or 0

    if previous == "paused":
        status = previous
    elif success:
        status = "up"
        if last_downtime_at is not None:
            total_downtime += minutes_between(last_downtime_at, now)
            last_downtime_at = None
        escalation_level = 0
    else:
        status = "down"
        if last_downtime_at is None:
            last_downtime_at = now

    return StatusTransition(
        previous_status=previous,
        status=status,
        last_check_at=now,
        last_downtime_at=last_downtime_at,
        total_downtime=total_downtime,
        escalation_level=escalation_level,
    )


def probe_location() -> dict:
    return {
        "name": settings.monitoring_location_name,
        "region": settings.monitoring_region,
        "city": settings.monitoring_city,
        "country": settings.monitoring_country,
        "coordinates": {
            "latitude": settings.monitoring_latitude,
            "longitude": settings.monitoring_longitude,
        },
    }


class CheckRecorder:
    """Writes one Check per probe and updates the owning monitor atomically."""

    def __init__(
        self,
        session_factory=async_session,
        publisher: Optional[RealtimePublisher] = None,
        alerter=None,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.alerter = alerter

    async def record(
        self,
        monitor_id: int,
        outcome: ProbeOutcome,
        now: Optional[datetime] = None,
    ) -> RecordResult:
        """Persist a probe outcome.

        Raises:
            MonitorNotFoundError: the monitor disappeared while being probed
            PersistenceError: the write failed; nothing was published
        """
        now = now or utcnow()

        try:
            async with self.session_factory() as session:
                monitors = MonitorRepository(session)
                monitor = await monitors.get(monitor_id)
                if monitor is None:
                    raise MonitorNotFoundError(monitor_id)

                transition = compute_transition(monitor, outcome.success, now)

                check = await CheckRepository(session).append(Check(
                    monitor_id=monitor.id,
                    success=outcome.success,
                    response_time_ms=max(0, outcome.response_time_ms),
                    status_code=outcome.status_code,
                    error_message=outcome.error_message,
                    location=probe_location(),
                    response_headers=outcome.response_headers or None,
                    checked_at=now,
                ))

                monitor.status = transition.status
                monitor.last_check_at = transition.last_check_at
                monitor.last_downtime_at = transition.last_downtime_at
                monitor.total_downtime = transition.total_downtime
                monitor.escalation_level = transition.escalation_level
                await monitors.save(monitor)

                await retry_on_transient(session.commit)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record check for monitor {monitor_id}: {e}", cause=e) from e

        if transition.changed:
            logger.info(f"Monitor {monitor.name}: {transition.previous_status} -> {transition.status}")
            await self._emit_status_change(monitor, transition, outcome, now)
        else:
            logger.debug(f"Monitor {monitor.name}: {transition.status}")

        return RecordResult(monitor=monitor, check=check, transition=transition)

    async def _emit_status_change(
        self,
        monitor: Monitor,
        transition: StatusTransition,
        outcome: ProbeOutcome,
        now: datetime,
    ):
        if self.publisher is not None:
            self.publisher.publish_status_change(
                monitor,
                transition.previous_status,
                response_time_ms=outcome.response_time_ms,
                error_message=outcome.error_message,
                timestamp=now,
            )

        if self.alerter is not None:
            try:
                await self.alerter.on_status_change(
                    monitor,
                    transition.previous_status,
                    transition.status,
                    response_time_ms=outcome.response_time_ms,
                    error_message=outcome.error_message,
                    now=now,
                )
            except Exception as e:
                logger.error(f"Alerting failed for monitor {monitor.id}: {e}")
