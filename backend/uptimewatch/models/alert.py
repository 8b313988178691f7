"""Alert model - log of notification deliveries."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from ..database import Base
from ..utils.clock import utcnow


class Alert(Base):
    """Record of one delivery attempt on one channel."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_type = Column(String, nullable=False)  # down, up, escalation
    level = Column(Integer, nullable=True)  # escalation level, if any
    channel = Column(String, nullable=False)  # email, slack, discord
    success = Column(Boolean, nullable=False)
    payload = Column(String, nullable=True)  # JSON summary of what was sent
    sent_at = Column(DateTime, default=utcnow)
