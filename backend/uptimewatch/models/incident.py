"""Incident models - tracked disruptions and their status timeline."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow

INCIDENT_STATUSES = ("investigating", "identified", "monitoring", "resolved")
INCIDENT_SEVERITIES = ("minor", "major", "critical")


class Incident(Base):
    """A disruption record scoped to a monitor."""

    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    status = Column(String, nullable=False, default="investigating")
    severity = Column(String, nullable=False, default="major")
    is_auto_created = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    updates = relationship(
        "IncidentUpdate",
        back_populates="incident",
        order_by="IncidentUpdate.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class IncidentUpdate(Base):
    """One entry in an incident's append-only status timeline."""

    __tablename__ = "incident_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_id = Column(Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    message = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    incident = relationship("Incident", back_populates="updates")
