"""Database models."""
from .user import User
from .monitor import Monitor
from .check import Check
from .incident import Incident, IncidentUpdate
from .alert import Alert

__all__ = ["User", "Monitor", "Check", "Incident", "IncidentUpdate", "Alert"]
