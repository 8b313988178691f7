"""Alerter service - reacts to monitor status transitions."""
import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from ..config import settings
from ..database import async_session
from ..models import Alert
from ..repositories import AlertRepository, UserRepository
from ..utils.clock import utcnow
from ..utils.db_utils import retry_on_transient
from .escalation import EscalationEngine
from .incidents import IncidentService
from .notifier import (
    CHANNEL_DISCORD,
    CHANNEL_EMAIL,
    CHANNEL_SLACK,
    AlertMessage,
    NotificationDispatcher,
    resolve_targets,
)

logger = logging.getLogger(__name__)

RECOVERY_CHANNELS = (CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_DISCORD)


class AlertService:
    """Routes status transitions to escalation, recovery notices and auto incidents.

    Only called on an actual change of status, so steady-state probes never
    reach this service.
    """

    def __init__(
        self,
        escalation: EscalationEngine,
        session_factory=async_session,
        dispatcher: Optional[NotificationDispatcher] = None,
        incidents: Optional[IncidentService] = None,
        auto_create_incidents: Optional[bool] = None,
    ):
        self.escalation = escalation
        self.session_factory = session_factory
        self.dispatcher = dispatcher or escalation.dispatcher
        self.incidents = incidents or IncidentService(session_factory)
        self.auto_create_incidents = (
            settings.auto_create_incidents if auto_create_incidents is None else auto_create_incidents
        )

    async def on_status_change(
        self,
        monitor,
        old_status: Optional[str],
        new_status: str,
        response_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        now = now or utcnow()

        if new_status == "up":
            self.escalation.clear(monitor.id)

        if self.auto_create_incidents:
            await self._sync_auto_incidents(monitor, new_status, error_message, now)

        if not monitor.alerts_enabled:
            logger.debug(f"Alerts disabled for {monitor.name}: {old_status} -> {new_status}")
            return

        if new_status == "down":
            # Level 1 has no delay; send it with the transition rather than on the next tick
            await self.escalation.escalate(monitor, now)
        elif new_status == "up" and old_status == "down":
            await self._send_recovery(monitor, response_time_ms, now)

    async def _send_recovery(self, monitor, response_time_ms: Optional[int], now: datetime):
        message = AlertMessage(
            monitor_name=monitor.name,
            url=monitor.url,
            status="up",
            headline="Service is back UP",
            response_time_ms=response_time_ms,
            timestamp=now,
        )

        async with self.session_factory() as session:
            destinations = await UserRepository(session).get_notification_destinations(monitor.user_id)
            if destinations is None:
                logger.error(f"User not found for monitor {monitor.id}")
                return
            targets = resolve_targets(monitor, destinations, RECOVERY_CHANNELS)

            results = await asyncio.gather(*[
                self.dispatcher.deliver(channel, destination, message)
                for channel, destination in targets
            ])

            try:
                alerts = AlertRepository(session)
                for (channel, _), success in zip(targets, results):
                    await alerts.append(Alert(
                        monitor_id=monitor.id,
                        alert_type="up",
                        channel=channel,
                        success=bool(success),
                        payload=json.dumps({"headline": message.headline}),
                        sent_at=now,
                    ))
                await retry_on_transient(session.commit)
            except Exception as e:
                logger.error(f"Failed to record recovery alerts for monitor {monitor.id}: {e}")

    async def _sync_auto_incidents(self, monitor, new_status: str, error_message: Optional[str], now: datetime):
        try:
            if new_status == "down":
                await self.incidents.open_auto_incident(monitor, error_message, now)
            elif new_status == "up":
                await self.incidents.resolve_auto_incidents(monitor, now)
        except Exception as e:
            logger.error(f"Failed to update auto incidents for monitor {monitor.id}: {e}")
