"""Incident API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core import MonitoringCore
from ..exceptions import IncidentError, MonitorNotFoundError
from ..schemas.incident import IncidentCreate, IncidentResponse, IncidentUpdateCreate
from .deps import get_core, get_user_id

router = APIRouter(prefix="/api", tags=["incidents"])


async def _require_monitor(core: MonitoringCore, monitor_id: int, user_id: int):
    try:
        await core.monitors.get_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")


@router.get("/monitors/{monitor_id}/incidents", response_model=List[IncidentResponse])
async def list_incidents(
    monitor_id: int,
    status: Optional[str] = Query(None),
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    await _require_monitor(core, monitor_id, user_id)
    return await core.incidents.list_for_monitor(monitor_id, status=status)


@router.post("/monitors/{monitor_id}/incidents", response_model=IncidentResponse, status_code=201)
async def create_incident(
    monitor_id: int,
    data: IncidentCreate,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    await _require_monitor(core, monitor_id, user_id)
    return await core.incidents.create_incident(
        monitor_id=monitor_id,
        title=data.title,
        description=data.description,
        severity=data.severity,
        status=data.status,
    )


@router.post("/incidents/{incident_id}/updates", response_model=IncidentResponse)
async def add_incident_update(
    incident_id: int,
    data: IncidentUpdateCreate,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    """Append a status update to an incident's timeline."""
    incident = await core.incidents.get_incident(incident_id)
    if incident is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    await _require_monitor(core, incident.monitor_id, user_id)

    try:
        return await core.incidents.add_update(incident_id, data.status, data.message)
    except IncidentError as e:
        raise HTTPException(status_code=409, detail=e.message)
