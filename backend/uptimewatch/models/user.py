"""User model - monitor owners and their notification preferences."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from ..database import Base
from ..utils.clock import utcnow


class User(Base):
    """Owner of monitors. Authentication lives outside this service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    notify_email = Column(Boolean, nullable=False, default=True)
    notify_slack = Column(Boolean, nullable=False, default=True)
    notify_discord = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
