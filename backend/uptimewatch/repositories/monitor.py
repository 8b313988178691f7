"""Monitor repository - reads and guarded writes of monitor state."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import PersistenceError
from ..models import Alert, Check, Incident, IncidentUpdate, Monitor
from ..policy import is_monitor_due
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class MonitorRepository:
    """Monitor access within a caller-owned session.

    Writes are flushed, not committed; the caller decides the transaction
    boundary. ``save`` relies on the mapper's version counter, so a write
    based on a stale read fails instead of silently overwriting.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, monitor_id: int) -> Optional[Monitor]:
        result = await self.session.execute(
            select(Monitor).where(Monitor.id == monitor_id)
        )
        return result.scalar_one_or_none()

    async def find_due_for_probe(self, now: Optional[datetime] = None) -> List[Monitor]:
        """Active, unpaused monitors whose interval has elapsed."""
        now = now or utcnow()
        result = await self.session.execute(
            select(Monitor).where(
                Monitor.is_active.is_(True),
                Monitor.status != "paused",
            )
        )
        return [
            m for m in result.scalars().all()
            if is_monitor_due(m.interval_seconds, m.last_check_at, now)
        ]

    async def find_active_down(self) -> List[Monitor]:
        result = await self.session.execute(
            select(Monitor).where(
                Monitor.is_active.is_(True),
                Monitor.status == "down",
            )
        )
        return list(result.scalars().all())

    async def save(self, monitor: Monitor) -> Monitor:
        self.session.add(monitor)
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise PersistenceError(f"Monitor {monitor.id} was modified concurrently", cause=e) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save monitor {monitor.id}: {e}", cause=e) from e
        return monitor

    async def mark_escalated(self, monitor_id: int, level: int, episode_start: datetime) -> bool:
        """Persist the highest fired escalation level for the current episode.

        Guarded on the episode start so a write racing a recovery cannot
        stamp a level onto a monitor that is already back up.
        """
        result = await self.session.execute(
            update(Monitor)
            .where(
                Monitor.id == monitor_id,
                Monitor.status == "down",
                Monitor.last_downtime_at == episode_start,
                Monitor.escalation_level < level,
            )
            .values(escalation_level=level)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def delete_cascade(self, monitor_id: int) -> bool:
        """Delete a monitor together with its checks, incidents and alert log."""
        incident_ids = select(Incident.id).where(Incident.monitor_id == monitor_id)
        await self.session.execute(
            delete(IncidentUpdate).where(IncidentUpdate.incident_id.in_(incident_ids))
        )
        await self.session.execute(delete(Incident).where(Incident.monitor_id == monitor_id))
        await self.session.execute(delete(Check).where(Check.monitor_id == monitor_id))
        await self.session.execute(delete(Alert).where(Alert.monitor_id == monitor_id))
        result = await self.session.execute(delete(Monitor).where(Monitor.id == monitor_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted monitor {monitor_id} and its history")
        return deleted
