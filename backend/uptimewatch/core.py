"""Wiring for the monitoring core.

All components share one session factory and one notification dispatcher.
Tests build a core with mock transports instead of patching module globals.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .database import async_session
from .services.alerter import AlertService
from .services.escalation import EscalationEngine
from .services.incidents import IncidentService
from .services.monitors import MonitorService
from .services.notifier import NotificationDispatcher
from .services.prober import ProbeService
from .services.realtime import RealtimePublisher
from .services.recorder import CheckRecorder
from .services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


@dataclass
class MonitoringCore:
    prober: ProbeService
    publisher: RealtimePublisher
    dispatcher: NotificationDispatcher
    escalation: EscalationEngine
    incidents: IncidentService
    alerter: AlertService
    recorder: CheckRecorder
    scheduler: SchedulerService
    monitors: MonitorService

    def start(self):
        self.scheduler.start()
        self.escalation.start()
        logger.info("Monitoring core started")

    def stop(self):
        self.scheduler.stop()
        self.escalation.stop()
        logger.info("Monitoring core stopped")


def build_core(
    session_factory=async_session,
    probe_transport: Optional[httpx.AsyncBaseTransport] = None,
    notify_transport: Optional[httpx.AsyncBaseTransport] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    max_concurrent_checks: Optional[int] = None,
    auto_create_incidents: Optional[bool] = None,
) -> MonitoringCore:
    prober = ProbeService(transport=probe_transport)
    publisher = RealtimePublisher()
    dispatcher = dispatcher or NotificationDispatcher(transport=notify_transport)
    escalation = EscalationEngine(session_factory, dispatcher)
    incidents = IncidentService(session_factory)
    alerter = AlertService(
        escalation,
        session_factory,
        dispatcher,
        incidents,
        auto_create_incidents=auto_create_incidents,
    )
    recorder = CheckRecorder(session_factory, publisher, alerter)
    scheduler = SchedulerService(
        recorder,
        prober,
        session_factory,
        max_concurrent_checks=max_concurrent_checks,
    )
    monitors = MonitorService(scheduler, escalation, session_factory)
    return MonitoringCore(
        prober=prober,
        publisher=publisher,
        dispatcher=dispatcher,
        escalation=escalation,
        incidents=incidents,
        alerter=alerter,
        recorder=recorder,
        scheduler=scheduler,
        monitors=monitors,
    )
