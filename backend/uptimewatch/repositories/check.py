"""Check repository - append-only probe history."""
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import PersistenceError
from ..models import Check


@dataclass
class UptimeStats:
    """Aggregate of a monitor's checks since a point in time."""
    total_checks: int
    successful_checks: int
    avg_response_time_ms: int

    @property
    def uptime_percentage(self) -> float:
        if not self.total_checks:
            return 0.0
        return round(self.successful_checks / self.total_checks * 100, 2)


class CheckRepository:
    """Checks are only ever appended, listed, aggregated, or aged out."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, check: Check) -> Check:
        self.session.add(check)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append check for monitor {check.monitor_id}: {e}", cause=e) from e
        return check

    async def list_for_monitor(self, monitor_id: int, limit: int = 100) -> List[Check]:
        """Most recent checks first, ordered by probe timestamp."""
        result = await self.session.execute(
            select(Check)
            .where(Check.monitor_id == monitor_id)
            .order_by(Check.checked_at.desc(), Check.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def uptime_stats(self, monitor_id: int, since: datetime) -> UptimeStats:
        """Success ratio and mean response time over checks taken at or after ``since``."""
        result = await self.session.execute(
            select(
                func.count(Check.id),
                func.coalesce(func.sum(case((Check.success.is_(True), 1), else_=0)), 0),
                func.avg(Check.response_time_ms),
            )
            .where(Check.monitor_id == monitor_id, Check.checked_at >= since)
        )
        total, successful, avg_ms = result.one()
        return UptimeStats(
            total_checks=total or 0,
            successful_checks=int(successful or 0),
            avg_response_time_ms=round(avg_ms) if avg_ms is not None else 0,
        )

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(Check).where(Check.checked_at < cutoff)
        )
        return result.rowcount or 0
