"""Services for probing, scheduling, escalation and alerting."""
from .prober import ProbeService
from .recorder import CheckRecorder
from .scheduler import SchedulerService
from .escalation import EscalationEngine
from .alerter import AlertService
from .notifier import NotificationDispatcher
from .realtime import RealtimePublisher
from .incidents import IncidentService
from .monitors import MonitorService

__all__ = [
    "ProbeService",
    "CheckRecorder",
    "SchedulerService",
    "EscalationEngine",
    "AlertService",
    "NotificationDispatcher",
    "RealtimePublisher",
    "IncidentService",
    "MonitorService",
]
