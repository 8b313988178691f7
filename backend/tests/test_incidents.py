from datetime import datetime, timedelta

import pytest

from uptimewatch.exceptions import IncidentError
from uptimewatch.services.alerter import AlertService
from uptimewatch.services.escalation import EscalationEngine
from uptimewatch.services.incidents import IncidentService

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.mark.asyncio
async def test_incident_timeline_until_resolved(session_factory, make_monitor):
    monitor = await make_monitor()
    incidents = IncidentService(session_factory)

    incident = await incidents.create_incident(monitor.id, "Checkout errors", "Users see 502s", now=NOW)
    assert incident.status == "investigating"
    assert [u.status for u in incident.updates] == ["investigating"]

    await incidents.add_update(incident.id, "identified", "Bad deploy", now=NOW + timedelta(minutes=5))
    resolved = await incidents.add_update(incident.id, "resolved", "Rolled back", now=NOW + timedelta(minutes=20))

    assert resolved.status == "resolved"
    assert resolved.resolved_at == NOW + timedelta(minutes=20)
    assert [u.status for u in resolved.updates] == ["investigating", "identified", "resolved"]

    with pytest.raises(IncidentError):
        await incidents.add_update(incident.id, "monitoring", "Still watching")


@pytest.mark.asyncio
async def test_invalid_status_and_unknown_incident_are_rejected(session_factory, make_monitor):
    monitor = await make_monitor()
    incidents = IncidentService(session_factory)

    with pytest.raises(IncidentError):
        await incidents.create_incident(monitor.id, "Bad", "Bad", status="exploded")
    with pytest.raises(IncidentError):
        await incidents.add_update(12345, "identified", "Nope")


@pytest.mark.asyncio
async def test_auto_incident_opens_once_and_resolves_on_recovery(session_factory, make_monitor, dispatcher):
    monitor = await make_monitor(status="down", last_downtime_at=NOW)
    incidents = IncidentService(session_factory)
    alerter = AlertService(
        EscalationEngine(session_factory, dispatcher),
        session_factory,
        dispatcher,
        incidents,
        auto_create_incidents=True,
    )

    await alerter.on_status_change(monitor, "up", "down", error_message="timeout", now=NOW)
    await alerter.on_status_change(monitor, "up", "down", error_message="timeout", now=NOW)

    opened = await incidents.list_for_monitor(monitor.id)
    assert len(opened) == 1
    assert opened[0].is_auto_created is True
    assert opened[0].description == "timeout"

    monitor.status = "up"
    await alerter.on_status_change(monitor, "down", "up", now=NOW + timedelta(minutes=7))

    closed = await incidents.list_for_monitor(monitor.id, status="resolved")
    assert len(closed) == 1
