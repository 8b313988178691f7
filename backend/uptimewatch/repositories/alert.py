"""Alert log repository."""
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Alert


class AlertRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, alert: Alert) -> Alert:
        self.session.add(alert)
        await self.session.flush()
        return alert
