"""Check model - immutable record of one probe attempt."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String

from ..database import Base
from ..utils.clock import utcnow


class Check(Base):
    """Result of a single probe. Written once, never updated."""

    __tablename__ = "checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    response_time_ms = Column(Integer, nullable=False, default=0)
    status_code = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    location = Column(JSON, nullable=True)  # name, region, city, country, coordinates
    response_headers = Column(JSON, nullable=True)
    checked_at = Column(DateTime, default=utcnow, index=True)
