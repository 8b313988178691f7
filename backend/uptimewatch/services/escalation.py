"""Escalation engine - multi-level alerting for monitors that stay down.

Each downtime episode walks an ordered ladder of levels. A level fires at
most once per (monitor, level) per episode:

- Fired levels are tracked in an in-process map keyed by (monitor_id,
  level, episode start), claimed just before that level is delivered.
  Keying on the episode start means a stale evaluation of an episode that
  already ended can never block the next one.
- Delivery re-checks the stored monitor first, so nothing is sent for an
  episode that ended while the engine was busy.
- The highest fired level is also persisted on the monitor, so a restarted
  process re-seeds its map instead of re-sending delivered alerts.
- Markers are cleared when the monitor recovers or is paused, and swept
  after a TTL by the tick itself.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import async_session
from ..models import Alert
from ..repositories import AlertRepository, MonitorRepository, UserRepository
from ..utils.clock import minutes_between, utcnow
from ..utils.db_utils import retry_on_transient
from .notifier import (
    CHANNEL_DISCORD,
    CHANNEL_EMAIL,
    CHANNEL_SLACK,
    AlertMessage,
    NotificationDispatcher,
    resolve_targets,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationLevel:
    """One rung of the escalation ladder."""
    level: int
    delay_minutes: int
    channels: Tuple[str, ...]
    message: str
    severity: str


DEFAULT_ESCALATION_LEVELS: Tuple[EscalationLevel, ...] = (
    EscalationLevel(
        level=1,
        delay_minutes=0,
        channels=(CHANNEL_EMAIL, CHANNEL_SLACK),
        message="Service is DOWN",
        severity="warning",
    ),
    EscalationLevel(
        level=2,
        delay_minutes=15,
        channels=(CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_DISCORD),
        message="URGENT: Service still DOWN after 15 minutes",
        severity="urgent",
    ),
    EscalationLevel(
        level=3,
        delay_minutes=60,
        channels=(CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_DISCORD),
        message="CRITICAL: Service DOWN for over 1 hour",
        severity="critical",
    ),
    EscalationLevel(
        level=4,
        delay_minutes=240,
        channels=(CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_DISCORD),
        message="EMERGENCY: Service DOWN for over 4 hours",
        severity="emergency",
    ),
)


class EscalationEngine:
    """Owns the escalation markers and the periodic escalation tick."""

    def __init__(
        self,
        session_factory=async_session,
        dispatcher: Optional[NotificationDispatcher] = None,
        levels: Tuple[EscalationLevel, ...] = DEFAULT_ESCALATION_LEVELS,
        marker_ttl: Optional[timedelta] = None,
        tick_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.levels = tuple(sorted(levels, key=lambda lvl: lvl.level))
        self.marker_ttl = marker_ttl or timedelta(hours=settings.escalation_marker_ttl_hours)
        self.tick_seconds = tick_seconds or settings.escalation_tick_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._markers: Dict[Tuple[int, int, datetime], datetime] = {}
        self._tick_lock = asyncio.Lock()
        self._running = False

    def start(self):
        """Start the escalation tick."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_escalations,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="run_escalations",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.tick_seconds,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Escalation engine started (tick={self.tick_seconds}s, levels={len(self.levels)})")

    def stop(self):
        """Stop the escalation tick."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Escalation engine stopped")

    async def _run_escalations(self):
        try:
            await self.run_tick()
        except Exception as e:
            logger.error(f"Error running escalations: {e}")

    async def run_tick(self, now: Optional[datetime] = None) -> int:
        """Scan down monitors and fire every level that has come due.

        Returns the number of levels fired. A tick that finds the previous
        one still running does nothing.
        """
        if self._tick_lock.locked():
            logger.debug("Escalation tick still running, skipping")
            return 0

        async with self._tick_lock:
            now = now or utcnow()
            self.sweep(now)

            async with self.session_factory() as session:
                monitor_ids = [m.id for m in await MonitorRepository(session).find_active_down()]

            fired = 0
            for monitor_id in monitor_ids:
                try:
                    # Earlier deliveries in this tick may have outlasted a recovery
                    async with self.session_factory() as session:
                        monitor = await MonitorRepository(session).get(monitor_id)
                    if monitor is not None:
                        fired += await self.escalate(monitor, now)
                except Exception as e:
                    logger.error(f"Error escalating monitor {monitor_id}: {e}")
            return fired

    async def escalate(self, monitor, now: Optional[datetime] = None) -> int:
        """Fire any due, not-yet-fired levels for one down monitor.

        Levels are claimed and fired one at a time. If a level fails before
        anything was sent, its claim is released and the remaining levels
        are left for the next evaluation.
        """
        now = now or utcnow()

        if monitor.status != "down" or not monitor.is_active:
            return 0
        if not monitor.alerts_enabled:
            logger.debug(f"Escalation skipped for {monitor.name}: alerts disabled")
            return 0
        if monitor.last_downtime_at is None:
            logger.warning(f"Monitor {monitor.id} is down without a downtime start, skipping escalation")
            return 0

        episode = monitor.last_downtime_at
        downtime_minutes = minutes_between(episode, now)
        persisted_level = monitor.escalation_level or 0

        fired = 0
        for rule in self.levels:
            if downtime_minutes < rule.delay_minutes:
                continue
            key = (monitor.id, rule.level, episode)
            if key in self._markers:
                continue
            # Claimed before any await so a concurrent evaluation cannot fire it again
            self._markers[key] = now
            if persisted_level >= rule.level:
                continue
            try:
                if await self._fire(monitor, rule, downtime_minutes, now):
                    fired += 1
            except Exception:
                self._markers.pop(key, None)
                raise
        return fired

    def clear(self, monitor_id: int):
        """Forget all fired levels for a monitor so its next episode starts at level 1."""
        for key in [k for k in self._markers if k[0] == monitor_id]:
            del self._markers[key]

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop markers older than the TTL."""
        now = now or utcnow()
        cutoff = now - self.marker_ttl
        expired = [key for key, fired_at in self._markers.items() if fired_at < cutoff]
        for key in expired:
            del self._markers[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired escalation markers")
        return len(expired)

    def has_fired(self, monitor_id: int, level: int) -> bool:
        return any(k[0] == monitor_id and k[1] == level for k in self._markers)

    @property
    def marker_count(self) -> int:
        return len(self._markers)

    async def _fire(self, monitor, rule: EscalationLevel, downtime_minutes: int, now: datetime) -> bool:
        """Deliver one level. Returns False when the episode ended before anything was sent."""
        message = AlertMessage(
            monitor_name=monitor.name,
            url=monitor.url,
            status="down",
            headline=f"{rule.message} ({downtime_minutes}min downtime)",
            error_message=f"Service has been down for {downtime_minutes} minutes",
            escalation_level=rule.level,
            downtime_minutes=downtime_minutes,
            timestamp=now,
        )

        async with self.session_factory() as session:
            current = await MonitorRepository(session).get(monitor.id)
            if (
                current is None
                or current.status != "down"
                or current.last_downtime_at != monitor.last_downtime_at
            ):
                logger.debug(f"Monitor {monitor.id} left its downtime episode; level {rule.level} not sent")
                return False

            destinations = await UserRepository(session).get_notification_destinations(monitor.user_id)
            if destinations is None:
                logger.warning(f"No active owner for monitor {monitor.id}; level {rule.level} not delivered")
            targets = resolve_targets(monitor, destinations, rule.channels)

            results = await asyncio.gather(*[
                self.dispatcher.deliver(channel, destination, message)
                for channel, destination in targets
            ])

            try:
                alerts = AlertRepository(session)
                for (channel, _), success in zip(targets, results):
                    await alerts.append(Alert(
                        monitor_id=monitor.id,
                        alert_type="escalation",
                        level=rule.level,
                        channel=channel,
                        success=bool(success),
                        payload=json.dumps({"headline": message.headline, "severity": rule.severity}),
                        sent_at=now,
                    ))
                await MonitorRepository(session).mark_escalated(monitor.id, rule.level, monitor.last_downtime_at)
                await retry_on_transient(session.commit)
            except Exception as e:
                logger.error(f"Failed to persist escalation level {rule.level} for monitor {monitor.id}: {e}")

        logger.info(
            f"Escalation level {rule.level} sent for {monitor.name} "
            f"({sum(1 for r in results if r)}/{len(targets)} channels delivered)"
        )
        return True
