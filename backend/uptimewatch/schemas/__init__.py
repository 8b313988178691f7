"""Pydantic schemas for API request/response models."""
from .monitor import (
    CustomHeader,
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    CheckResponse,
    UptimeResponse,
)
from .incident import (
    IncidentCreate,
    IncidentUpdateCreate,
    IncidentResponse,
    IncidentUpdateResponse,
)

__all__ = [
    "CustomHeader",
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorResponse",
    "CheckResponse",
    "UptimeResponse",
    "IncidentCreate",
    "IncidentUpdateCreate",
    "IncidentResponse",
    "IncidentUpdateResponse",
]
