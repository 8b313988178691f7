"""User lookups for notification routing."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User


@dataclass
class NotificationDestinations:
    """Where an owner wants to hear about their monitors."""
    email: Optional[str]
    notify_email: bool = True
    notify_slack: bool = True
    notify_discord: bool = True


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_notification_destinations(self, owner_id: int) -> Optional[NotificationDestinations]:
        """Destinations for an owner, or None if the user is gone or deactivated."""
        result = await self.session.execute(select(User).where(User.id == owner_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            return None
        return NotificationDestinations(
            email=user.email or None,
            notify_email=bool(user.notify_email),
            notify_slack=bool(user.notify_slack),
            notify_discord=bool(user.notify_discord),
        )
