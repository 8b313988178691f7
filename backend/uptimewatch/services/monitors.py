"""Monitor lifecycle - create, update, pause, resume and delete."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..database import async_session
from ..exceptions import MonitorNotFoundError, PersistenceError
from ..models import Monitor
from ..repositories import MonitorRepository
from ..schemas.monitor import MonitorCreate, MonitorUpdate
from ..utils.clock import minutes_between, utcnow
from ..utils.db_utils import retry_on_transient
from .escalation import EscalationEngine
from .scheduler import SchedulerService

logger = logging.getLogger(__name__)

# Changing any of these invalidates the last result, so the monitor is re-probed
PROBE_FIELDS = ("url", "method", "timeout_seconds", "expected_status_code", "custom_headers")


async def _commit(session):
    try:
        await retry_on_transient(session.commit)
    except StaleDataError as e:
        raise PersistenceError("Monitor was modified concurrently", cause=e) from e
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to save monitor: {e}", cause=e) from e


class MonitorService:
    """Lifecycle actions that touch live monitor state.

    Every action that writes status holds the scheduler's per-monitor lock,
    so it serialises with any probe in flight for the same monitor.
    """

    def __init__(
        self,
        scheduler: SchedulerService,
        escalation: EscalationEngine,
        session_factory=async_session,
    ):
        self.scheduler = scheduler
        self.escalation = escalation
        self.session_factory = session_factory

    async def _get_owned(self, repo: MonitorRepository, monitor_id: int, user_id: Optional[int]) -> Monitor:
        monitor = await repo.get(monitor_id)
        if monitor is None or (user_id is not None and monitor.user_id != user_id):
            raise MonitorNotFoundError(monitor_id)
        return monitor

    async def get_monitor(self, monitor_id: int, user_id: Optional[int] = None) -> Monitor:
        async with self.session_factory() as session:
            return await self._get_owned(MonitorRepository(session), monitor_id, user_id)

    async def create_monitor(self, user_id: int, data: MonitorCreate, probe_now: bool = True) -> Monitor:
        """Save a new monitor and run its first probe immediately."""
        fields = data.model_dump()
        fields["custom_headers"] = [h.model_dump() for h in data.custom_headers]
        monitor = Monitor(user_id=user_id, status="pending", is_active=True, **fields)

        async with self.session_factory() as session:
            session.add(monitor)
            await _commit(session)
        logger.info(f"Created monitor {monitor.id} ({monitor.url})")

        if probe_now:
            result = await self.scheduler.check_now(monitor.id)
            if result is not None:
                return result.monitor
        return monitor

    async def update_monitor(
        self,
        monitor_id: int,
        update: MonitorUpdate,
        user_id: Optional[int] = None,
    ) -> Monitor:
        changes = update.model_dump(exclude_unset=True)
        if "custom_headers" in changes and update.custom_headers is not None:
            changes["custom_headers"] = [h.model_dump() for h in update.custom_headers]

        async with self.scheduler.monitor_lock(monitor_id):
            async with self.session_factory() as session:
                repo = MonitorRepository(session)
                monitor = await self._get_owned(repo, monitor_id, user_id)
                for key, value in changes.items():
                    if value is not None:
                        setattr(monitor, key, value)
                await repo.save(monitor)
                await _commit(session)

        if monitor.status != "paused" and any(key in changes for key in PROBE_FIELDS):
            result = await self.scheduler.check_now(monitor_id)
            if result is not None:
                return result.monitor
        return monitor

    async def pause_monitor(
        self,
        monitor_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Monitor:
        """Stop probing a monitor. An open downtime episode is closed and escalation reset."""
        now = now or utcnow()
        async with self.scheduler.monitor_lock(monitor_id):
            async with self.session_factory() as session:
                repo = MonitorRepository(session)
                monitor = await self._get_owned(repo, monitor_id, user_id)
                if monitor.last_downtime_at is not None:
                    monitor.total_downtime = (monitor.total_downtime or 0) + minutes_between(monitor.last_downtime_at, now)
                    monitor.last_downtime_at = None
                monitor.status = "paused"
                monitor.escalation_level = 0
                await repo.save(monitor)
                await _commit(session)

        self.escalation.clear(monitor_id)
        logger.info(f"Paused monitor {monitor_id}")
        return monitor

    async def resume_monitor(
        self,
        monitor_id: int,
        user_id: Optional[int] = None,
        probe_now: bool = True,
    ) -> Monitor:
        """Resume probing; the monitor is pending until its immediate probe lands."""
        async with self.scheduler.monitor_lock(monitor_id):
            async with self.session_factory() as session:
                repo = MonitorRepository(session)
                monitor = await self._get_owned(repo, monitor_id, user_id)
                monitor.status = "pending"
                monitor.is_active = True
                await repo.save(monitor)
                await _commit(session)
        logger.info(f"Resumed monitor {monitor_id}")

        if probe_now:
            result = await self.scheduler.check_now(monitor_id)
            if result is not None:
                return result.monitor
        return monitor

    async def delete_monitor(self, monitor_id: int, user_id: Optional[int] = None):
        """Delete a monitor and cascade-delete its checks, incidents and alert log."""
        async with self.scheduler.monitor_lock(monitor_id):
            async with self.session_factory() as session:
                repo = MonitorRepository(session)
                await self._get_owned(repo, monitor_id, user_id)
                await repo.delete_cascade(monitor_id)
                await _commit(session)
        self.scheduler.forget(monitor_id)
        self.escalation.clear(monitor_id)
