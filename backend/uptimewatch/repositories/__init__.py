"""Repositories over the async SQLAlchemy session."""
from .monitor import MonitorRepository
from .check import CheckRepository, UptimeStats
from .user import UserRepository, NotificationDestinations
from .alert import AlertRepository

__all__ = [
    "MonitorRepository",
    "CheckRepository",
    "UptimeStats",
    "UserRepository",
    "NotificationDestinations",
    "AlertRepository",
]
