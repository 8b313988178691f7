"""Incident service - disruption records with an append-only status timeline."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select

from ..database import async_session
from ..exceptions import IncidentError
from ..models import Incident, IncidentUpdate
from ..models.incident import INCIDENT_SEVERITIES, INCIDENT_STATUSES
from ..utils.clock import utcnow
from ..utils.db_utils import retry_on_transient

logger = logging.getLogger(__name__)


def _validate(status: Optional[str] = None, severity: Optional[str] = None):
    if status is not None and status not in INCIDENT_STATUSES:
        raise IncidentError(f"Invalid incident status: {status}")
    if severity is not None and severity not in INCIDENT_SEVERITIES:
        raise IncidentError(f"Invalid incident severity: {severity}")


class IncidentService:
    def __init__(self, session_factory=async_session):
        self.session_factory = session_factory

    async def create_incident(
        self,
        monitor_id: int,
        title: str,
        description: str,
        severity: str = "major",
        status: str = "investigating",
        is_auto_created: bool = False,
        now: Optional[datetime] = None,
    ) -> Incident:
        _validate(status, severity)
        now = now or utcnow()
        incident = Incident(
            monitor_id=monitor_id,
            title=title,
            description=description,
            status=status,
            severity=severity,
            is_auto_created=is_auto_created,
            started_at=now,
            resolved_at=now if status == "resolved" else None,
        )
        incident.updates.append(IncidentUpdate(status=status, message=description, created_at=now))

        async with self.session_factory() as session:
            session.add(incident)
            await retry_on_transient(session.commit)
        return incident

    async def add_update(
        self,
        incident_id: int,
        status: str,
        message: str,
        now: Optional[datetime] = None,
    ) -> Incident:
        """Append a status update. Resolved incidents are closed to further updates."""
        _validate(status)
        now = now or utcnow()

        async with self.session_factory() as session:
            result = await session.execute(select(Incident).where(Incident.id == incident_id))
            incident = result.scalar_one_or_none()
            if incident is None:
                raise IncidentError(f"Incident {incident_id} not found")
            if incident.status == "resolved":
                raise IncidentError(f"Incident {incident_id} is already resolved")

            incident.updates.append(IncidentUpdate(status=status, message=message, created_at=now))
            incident.status = status
            if status == "resolved":
                incident.resolved_at = now
            await retry_on_transient(session.commit)
        return incident

    async def get_incident(self, incident_id: int) -> Optional[Incident]:
        async with self.session_factory() as session:
            result = await session.execute(select(Incident).where(Incident.id == incident_id))
            return result.scalar_one_or_none()

    async def list_for_monitor(self, monitor_id: int, status: Optional[str] = None) -> List[Incident]:
        async with self.session_factory() as session:
            query = select(Incident).where(Incident.monitor_id == monitor_id)
            if status:
                query = query.where(Incident.status == status)
            result = await session.execute(query.order_by(Incident.started_at.desc(), Incident.id.desc()))
            return list(result.scalars().all())

    async def open_auto_incident(
        self,
        monitor,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Incident]:
        """Open a system-raised incident for a monitor that just went down, unless one is open."""
        open_incidents = [
            i for i in await self.list_for_monitor(monitor.id)
            if i.is_auto_created and i.status != "resolved"
        ]
        if open_incidents:
            return None

        incident = await self.create_incident(
            monitor_id=monitor.id,
            title=f"{monitor.name} is down",
            description=error_message or f"{monitor.url} failed its health check",
            severity="major",
            is_auto_created=True,
            now=now,
        )
        logger.info(f"Opened incident {incident.id} for {monitor.name}")
        return incident

    async def resolve_auto_incidents(self, monitor, now: Optional[datetime] = None) -> int:
        """Resolve every open system-raised incident of a recovered monitor."""
        resolved = 0
        for incident in await self.list_for_monitor(monitor.id):
            if incident.is_auto_created and incident.status != "resolved":
                await self.add_update(incident.id, "resolved", f"{monitor.name} is back up", now=now)
                resolved += 1
        return resolved
