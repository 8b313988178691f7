"""Shared fixtures: a throwaway SQLite database and monitor/user factories."""
import os
import tempfile

# Point the app at a temp SQLite file BEFORE importing it
_data_dir = tempfile.mkdtemp(prefix="uptimewatch_test_")
os.environ["DATA_PATH"] = _data_dir
os.environ.pop("DATABASE_URL", None)
os.environ["SMTP_HOST"] = ""

from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from uptimewatch.database import Base, async_session, engine
from uptimewatch.models import Monitor, User
from uptimewatch.services.prober import ProbeOutcome


@pytest_asyncio.fixture
async def session_factory():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_session
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def user(session_factory):
    owner = User(email="owner@example.com", name="Owner")
    async with session_factory() as session:
        session.add(owner)
        await session.commit()
    return owner


@pytest.fixture
def make_monitor(session_factory, user):
    async def _make(**overrides) -> Monitor:
        fields = dict(
            user_id=user.id,
            name="Example API",
            url="https://example.com/health",
            method="GET",
            interval_seconds=60,
            timeout_seconds=10,
            expected_status_code=200,
            custom_headers=[],
            alerts_enabled=True,
            alert_email=True,
            slack_webhook="https://hooks.slack.test/T000/B000",
            discord_webhook="",
            status="pending",
            is_active=True,
        )
        fields.update(overrides)
        monitor = Monitor(**fields)
        async with session_factory() as session:
            session.add(monitor)
            await session.commit()
        return monitor

    return _make


async def load_monitor(session_factory, monitor_id: int) -> Optional[Monitor]:
    async with session_factory() as session:
        return await session.get(Monitor, monitor_id)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; records every delivery."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[str, str, object]] = []

    async def deliver(self, channel, destination, message) -> bool:
        self.sent.append((channel, destination, message))
        return self.succeed

    def levels(self) -> List[Optional[int]]:
        return [message.escalation_level for _, _, message in self.sent]


class FakeProber:
    """Returns canned outcomes per URL; an Exception value is raised instead."""

    def __init__(self, outcomes: Optional[Dict[str, object]] = None, default_success: bool = True):
        self.outcomes = outcomes or {}
        self.default_success = default_success
        self.calls: List[str] = []

    async def probe(self, target) -> ProbeOutcome:
        self.calls.append(target.url)
        outcome = self.outcomes.get(target.url)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        if self.default_success:
            return ProbeOutcome(success=True, response_time_ms=42, status_code=200)
        return ProbeOutcome(success=False, response_time_ms=42, status_code=503,
                            error_message="Expected status 200, got 503")


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
