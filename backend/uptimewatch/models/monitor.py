"""Monitor model - HTTP endpoints being probed."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String

from ..database import Base
from ..utils.clock import utcnow

MONITOR_STATUSES = ("pending", "up", "down", "paused")
HTTP_METHODS = ("GET", "POST", "DELETE", "HEAD")


class Monitor(Base):
    """A user's probe target configuration and its live health state.

    Live fields (status, last_check_at, last_downtime_at, total_downtime,
    escalation_level) are only written by the check recorder, the
    escalation engine and the pause/resume actions.
    """

    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    method = Column(String, nullable=False, default="GET")
    interval_seconds = Column(Integer, nullable=False, default=300)
    timeout_seconds = Column(Integer, nullable=False, default=30)
    expected_status_code = Column(Integer, nullable=False, default=200)
    custom_headers = Column(JSON, nullable=False, default=list)  # [{"key": ..., "value": ...}]

    # Alert settings
    alerts_enabled = Column(Boolean, nullable=False, default=True)
    alert_email = Column(Boolean, nullable=False, default=True)
    slack_webhook = Column(String, nullable=False, default="")
    discord_webhook = Column(String, nullable=False, default="")

    # Live state
    status = Column(String, nullable=False, default="pending")  # pending, up, down, paused
    is_active = Column(Boolean, nullable=False, default=True)
    last_check_at = Column(DateTime, nullable=True)
    last_downtime_at = Column(DateTime, nullable=True)  # Set only while down
    total_downtime = Column(Integer, nullable=False, default=0)  # minutes
    escalation_level = Column(Integer, nullable=False, default=0)  # highest level fired this episode

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    def header_map(self) -> dict:
        """Custom headers as a plain mapping."""
        return {
            h["key"]: h["value"]
            for h in (self.custom_headers or [])
            if h.get("key")
        }
