"""Monitor lifecycle API endpoints."""
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import MonitoringCore
from ..database import get_db
from ..exceptions import MonitorNotFoundError, PersistenceError
from ..repositories import CheckRepository
from ..schemas.monitor import (
    UPTIME_PERIOD_DAYS,
    CheckResponse,
    MonitorCreate,
    MonitorResponse,
    MonitorUpdate,
    UptimePeriod,
    UptimeResponse,
)
from ..utils.clock import utcnow
from .deps import get_core, get_user_id

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(
    data: MonitorCreate,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    """Create a monitor and run its first check immediately."""
    try:
        return await core.monitors.create_monitor(user_id, data)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(
    monitor_id: int,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    try:
        return await core.monitors.get_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")


@router.put("/{monitor_id}", response_model=MonitorResponse)
async def update_monitor(
    monitor_id: int,
    update: MonitorUpdate,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    try:
        return await core.monitors.update_monitor(monitor_id, update, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    except PersistenceError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/{monitor_id}/pause", response_model=MonitorResponse)
async def pause_monitor(
    monitor_id: int,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    try:
        return await core.monitors.pause_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    except PersistenceError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/{monitor_id}/resume", response_model=MonitorResponse)
async def resume_monitor(
    monitor_id: int,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    try:
        return await core.monitors.resume_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    except PersistenceError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/{monitor_id}/check", response_model=CheckResponse)
async def check_monitor(
    monitor_id: int,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    """Run a check now, outside the schedule."""
    try:
        await core.monitors.get_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")

    result = await core.scheduler.check_now(monitor_id)
    if result is None:
        raise HTTPException(status_code=409, detail="Monitor is paused or could not be checked")
    return result.check


@router.get("/{monitor_id}/checks", response_model=List[CheckResponse])
async def list_checks(
    monitor_id: int,
    limit: int = Query(100, ge=1, le=1000),
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
    db: AsyncSession = Depends(get_db),
):
    try:
        await core.monitors.get_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return await CheckRepository(db).list_for_monitor(monitor_id, limit=limit)


@router.get("/{monitor_id}/uptime", response_model=UptimeResponse)
async def get_uptime(
    monitor_id: int,
    period: UptimePeriod = Query("30d"),
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
    db: AsyncSession = Depends(get_db),
):
    """Uptime percentage and average response time over the last 1, 7 or 30 days."""
    try:
        await core.monitors.get_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")

    since = utcnow() - timedelta(days=UPTIME_PERIOD_DAYS[period])
    stats = await CheckRepository(db).uptime_stats(monitor_id, since)
    return UptimeResponse(
        period=period,
        uptime_percentage=stats.uptime_percentage,
        avg_response_time_ms=stats.avg_response_time_ms,
        total_checks=stats.total_checks,
        successful_checks=stats.successful_checks,
    )


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(
    monitor_id: int,
    user_id: int = Depends(get_user_id),
    core: MonitoringCore = Depends(get_core),
):
    """Delete a monitor with its checks, incidents and alert history."""
    try:
        await core.monitors.delete_monitor(monitor_id, user_id)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=e.message)
