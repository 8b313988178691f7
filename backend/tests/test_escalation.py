from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import RecordingDispatcher, load_monitor
from uptimewatch.models import Alert, User
from uptimewatch.repositories.user import UserRepository
from uptimewatch.services.alerter import AlertService
from uptimewatch.services.escalation import EscalationEngine
from uptimewatch.services.prober import ProbeOutcome
from uptimewatch.services.recorder import CheckRecorder

NOW = datetime(2026, 3, 1, 12, 0, 0)
FAILURE = ProbeOutcome(success=False, response_time_ms=30, status_code=502,
                       error_message="Expected status 200, got 502")
SUCCESS = ProbeOutcome(success=True, response_time_ms=30, status_code=200)


def _engine(session_factory, dispatcher, **kwargs) -> EscalationEngine:
    return EscalationEngine(session_factory, dispatcher, **kwargs)


async def _alerts(session_factory, monitor_id):
    async with session_factory() as session:
        result = await session.execute(select(Alert).where(Alert.monitor_id == monitor_id).order_by(Alert.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_sixteen_minutes_down_fires_levels_one_and_two_once(session_factory, make_monitor, dispatcher):
    monitor = await make_monitor(status="down", last_downtime_at=NOW - timedelta(minutes=16))
    engine = _engine(session_factory, dispatcher)

    assert await engine.run_tick(NOW) == 2
    assert await engine.run_tick(NOW + timedelta(minutes=5)) == 0

    assert sorted(dispatcher.levels()) == [1, 1, 2, 2]
    assert {channel for channel, _, _ in dispatcher.sent} == {"email", "slack"}
    assert engine.has_fired(monitor.id, 1) and engine.has_fired(monitor.id, 2)
    assert not engine.has_fired(monitor.id, 3)

    stored = await load_monitor(session_factory, monitor.id)
    assert stored.escalation_level == 2

    alerts = await _alerts(session_factory, monitor.id)
    assert len(alerts) == 4
    assert all(a.alert_type == "escalation" and a.success for a in alerts)


@pytest.mark.asyncio
async def test_discord_only_used_from_level_two(session_factory, make_monitor, dispatcher):
    await make_monitor(status="down", last_downtime_at=NOW - timedelta(minutes=20),
                       discord_webhook="https://discord.test/api/webhooks/1")
    await _engine(session_factory, dispatcher).run_tick(NOW)

    by_level = {}
    for channel, _, message in dispatcher.sent:
        by_level.setdefault(message.escalation_level, set()).add(channel)
    assert by_level[1] == {"email", "slack"}
    assert by_level[2] == {"email", "slack", "discord"}


@pytest.mark.asyncio
async def test_restart_does_not_refire_persisted_levels(session_factory, make_monitor, dispatcher):
    await make_monitor(status="down", last_downtime_at=NOW - timedelta(minutes=16))
    await _engine(session_factory, dispatcher).run_tick(NOW)
    sent_before = len(dispatcher.sent)

    restarted = _engine(session_factory, dispatcher)
    assert await restarted.run_tick(NOW + timedelta(minutes=1)) == 0
    assert len(dispatcher.sent) == sent_before

    # Level 3 still fires when its time comes
    assert await restarted.run_tick(NOW + timedelta(minutes=45)) == 1
    assert dispatcher.levels()[-1] == 3


@pytest.mark.asyncio
async def test_sweep_expires_old_markers(session_factory, make_monitor, dispatcher):
    await make_monitor(status="down", last_downtime_at=NOW)
    engine = _engine(session_factory, dispatcher, marker_ttl=timedelta(hours=1))

    await engine.run_tick(NOW)
    assert engine.marker_count == 1

    assert engine.sweep(NOW + timedelta(minutes=30)) == 0
    assert engine.sweep(NOW + timedelta(hours=2)) == 1
    assert engine.marker_count == 0


@pytest.mark.asyncio
async def test_alerts_disabled_sends_nothing(session_factory, make_monitor, dispatcher):
    await make_monitor(status="down", last_downtime_at=NOW - timedelta(hours=5), alerts_enabled=False)
    assert await _engine(session_factory, dispatcher).run_tick(NOW) == 0
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_missing_owner_destinations_still_marks_level(session_factory, make_monitor, user, dispatcher):
    monitor = await make_monitor(status="down", last_downtime_at=NOW)
    async with session_factory() as session:
        owner = await session.get(User, user.id)
        owner.is_active = False
        await session.commit()

    engine = _engine(session_factory, dispatcher)
    assert await engine.run_tick(NOW) == 1
    assert dispatcher.sent == []
    assert engine.has_fired(monitor.id, 1)


@pytest.mark.asyncio
async def test_pipeline_fires_level_one_on_transition_and_resets_after_recovery(
    session_factory, make_monitor, dispatcher
):
    monitor = await make_monitor(status="up")
    engine = _engine(session_factory, dispatcher)
    alerter = AlertService(engine, session_factory, dispatcher, auto_create_incidents=False)
    recorder = CheckRecorder(session_factory, alerter=alerter)

    # Transition to down sends level 1 right away
    await recorder.record(monitor.id, FAILURE, now=NOW)
    assert dispatcher.levels() == [1, 1]

    # Steady-state failures and the next tick add nothing
    await recorder.record(monitor.id, FAILURE, now=NOW + timedelta(minutes=1))
    assert await engine.run_tick(NOW + timedelta(minutes=2)) == 0
    assert len(dispatcher.sent) == 2

    # Recovery sends a notice and clears markers
    await recorder.record(monitor.id, SUCCESS, now=NOW + timedelta(minutes=3))
    assert engine.marker_count == 0
    recovery = [m for _, _, m in dispatcher.sent if m.status == "up"]
    assert len(recovery) == 2

    stored = await load_monitor(session_factory, monitor.id)
    assert stored.escalation_level == 0
    assert stored.total_downtime == 3

    # A new episode starts from level 1 again
    await recorder.record(monitor.id, FAILURE, now=NOW + timedelta(minutes=10))
    assert dispatcher.levels()[-2:] == [1, 1]


@pytest.mark.asyncio
async def test_failed_delivery_is_logged_and_not_retried(session_factory, make_monitor):
    monitor = await make_monitor(status="down", last_downtime_at=NOW)
    failing = RecordingDispatcher(succeed=False)
    engine = _engine(session_factory, failing)

    await engine.run_tick(NOW)
    await engine.run_tick(NOW + timedelta(minutes=1))

    assert len(failing.sent) == 2
    alerts = await _alerts(session_factory, monitor.id)
    assert [a.success for a in alerts] == [False, False]


@pytest.mark.asyncio
async def test_stale_evaluation_of_ended_episode_does_not_block_next(session_factory, make_monitor, dispatcher):
    monitor = await make_monitor(status="up")
    engine = _engine(session_factory, dispatcher)
    alerter = AlertService(engine, session_factory, dispatcher, auto_create_incidents=False)
    recorder = CheckRecorder(session_factory, alerter=alerter)

    await recorder.record(monitor.id, FAILURE, now=NOW)
    stale = await load_monitor(session_factory, monitor.id)
    await recorder.record(monitor.id, SUCCESS, now=NOW + timedelta(minutes=2))

    # Evaluating the snapshot taken before recovery sends nothing
    assert await engine.escalate(stale, NOW + timedelta(minutes=3)) == 0
    sent = len(dispatcher.sent)

    await recorder.record(monitor.id, FAILURE, now=NOW + timedelta(minutes=5))
    assert dispatcher.levels()[sent:] == [1, 1]


@pytest.mark.asyncio
async def test_failed_level_leaves_later_levels_for_next_tick(session_factory, make_monitor, dispatcher, monkeypatch):
    monitor = await make_monitor(status="down", last_downtime_at=NOW - timedelta(minutes=16))
    original = UserRepository.get_notification_destinations
    calls = []

    async def flaky_destinations(self, owner_id):
        calls.append(owner_id)
        if len(calls) == 1:
            raise RuntimeError("database went away")
        return await original(self, owner_id)

    monkeypatch.setattr(UserRepository, "get_notification_destinations", flaky_destinations)
    engine = _engine(session_factory, dispatcher)

    assert await engine.run_tick(NOW) == 0
    assert not engine.has_fired(monitor.id, 1)
    assert not engine.has_fired(monitor.id, 2)
    assert dispatcher.sent == []

    assert await engine.run_tick(NOW + timedelta(minutes=1)) == 2
    assert sorted(dispatcher.levels()) == [1, 1, 2, 2]
