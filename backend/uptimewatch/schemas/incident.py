"""Incident schemas for API."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

IncidentStatus = Literal["investigating", "identified", "monitoring", "resolved"]
IncidentSeverity = Literal["minor", "major", "critical"]


class IncidentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    status: IncidentStatus = "investigating"
    severity: IncidentSeverity = "major"


class IncidentUpdateCreate(BaseModel):
    status: IncidentStatus
    message: str = Field(..., min_length=1)


class IncidentUpdateResponse(BaseModel):
    id: int
    status: str
    message: str
    created_at: datetime

    class Config:
        from_attributes = True


class IncidentResponse(BaseModel):
    id: int
    monitor_id: int
    title: str
    description: str
    status: str
    severity: str
    is_auto_created: bool
    started_at: datetime
    resolved_at: Optional[datetime] = None
    updates: List[IncidentUpdateResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True
