"""Scheduler service - discovers due monitors and dispatches probes.

Scheduling design:
- One fixed-cadence tick (60s by default) selects due monitors and spawns a
  task per monitor, then returns. A slow probe never delays the next tick.
- A monitor whose previous probe is still in flight is skipped, and every
  probe-and-record runs under that monitor's own lock, so a monitor never
  has two probes in flight while other monitors proceed independently.
- A semaphore shared across ticks caps outbound requests in flight. It is
  released before the result is recorded, so slow alert delivery for one
  monitor never holds back checks of other monitors.
- Failures are contained per monitor: logged, and retried on the next tick
  where the monitor is still due.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import AsyncContextManager, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import async_session
from ..policy import is_monitor_due, is_probeable
from ..repositories import CheckRepository, MonitorRepository
from ..utils.clock import utcnow
from ..utils.db_utils import retry_on_transient
from ..utils.locks import KeyedLock
from .prober import ProbeService, ProbeTarget
from .recorder import CheckRecorder, RecordResult

logger = logging.getLogger(__name__)


class SchedulerService:
    """Periodic probe dispatch with per-monitor mutual exclusion."""

    def __init__(
        self,
        recorder: CheckRecorder,
        prober: Optional[ProbeService] = None,
        session_factory=async_session,
        max_concurrent_checks: Optional[int] = None,
        tick_seconds: Optional[int] = None,
    ):
        self.recorder = recorder
        self.prober = prober or ProbeService()
        self.session_factory = session_factory
        self.max_concurrent_checks = max_concurrent_checks or settings.max_concurrent_checks
        self.tick_seconds = tick_seconds or settings.probe_tick_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._locks = KeyedLock()
        self._semaphore = asyncio.Semaphore(self.max_concurrent_checks)
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_checks,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="run_checks",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.tick_seconds,
        )
        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (tick={self.tick_seconds}s, max_concurrent={self.max_concurrent_checks})")

    def stop(self):
        """Stop the scheduler and cancel probes still in flight."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            for task in list(self._tasks):
                task.cancel()
            logger.info("Scheduler stopped")

    def monitor_lock(self, monitor_id: int) -> AsyncContextManager[None]:
        """Exclusive access to a monitor's live state, shared with in-flight probes."""
        return self._locks.hold(monitor_id)

    def is_in_flight(self, monitor_id: int) -> bool:
        return monitor_id in self._in_flight

    async def _run_checks(self):
        try:
            await self.run_tick()
        except Exception as e:
            logger.error(f"Error running checks: {e}")

    async def run_tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Dispatch a probe task for every due monitor not already in flight."""
        async with self.session_factory() as session:
            due = await MonitorRepository(session).find_due_for_probe(now or utcnow())

        tasks = []
        for monitor in due:
            if monitor.id in self._in_flight:
                logger.debug(f"Monitor {monitor.id} still being probed, skipping")
                continue
            tasks.append(self._spawn(monitor.id, now))

        if tasks:
            logger.debug(f"Dispatched {len(tasks)} due monitors")
        return tasks

    async def check_now(self, monitor_id: int, now: Optional[datetime] = None) -> Optional[RecordResult]:
        """Probe a monitor immediately, outside the tick (creation, resume)."""
        return await self._probe_monitor(monitor_id, now=now, force=True)

    async def drain(self):
        """Wait for every dispatched probe to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def forget(self, monitor_id: int) -> bool:
        """Cancel a deleted monitor's dispatched probe, if any."""
        task = self._in_flight.get(monitor_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Cancelled pending probe for monitor {monitor_id}")
        return True

    def _spawn(self, monitor_id: int, now: Optional[datetime]) -> asyncio.Task:
        task = asyncio.create_task(self._probe_monitor(monitor_id, now=now))
        self._in_flight[monitor_id] = task
        self._tasks.add(task)

        def _done(t: asyncio.Task):
            self._tasks.discard(t)
            if self._in_flight.get(monitor_id) is t:
                del self._in_flight[monitor_id]

        task.add_done_callback(_done)
        return task

    async def _probe_monitor(
        self,
        monitor_id: int,
        now: Optional[datetime] = None,
        force: bool = False,
    ) -> Optional[RecordResult]:
        """Probe and record one monitor under its lock. Never raises.

        ``now`` pins the clock for the due check and the check timestamp;
        when omitted both use the time at which they happen.
        """
        try:
            async with self._locks.hold(monitor_id):
                # Re-read under the lock: the monitor may have been paused,
                # deleted or probed since it was selected
                async with self.session_factory() as session:
                    monitor = await MonitorRepository(session).get(monitor_id)
                if monitor is None:
                    logger.debug(f"Monitor {monitor_id} no longer exists")
                    return None
                if not is_probeable(monitor.status, monitor.is_active):
                    return None
                if not force and not is_monitor_due(
                    monitor.interval_seconds, monitor.last_check_at, now or utcnow()
                ):
                    return None

                # The cap covers outbound requests only; recording and alerting run after release
                async with self._semaphore:
                    outcome = await self.prober.probe(ProbeTarget.from_monitor(monitor))
                return await self.recorder.record(monitor_id, outcome, now=now)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error checking monitor {monitor_id}: {e}")
            return None

    async def _cleanup_old_records(self):
        """Delete checks older than the retention window."""
        try:
            cutoff = utcnow() - timedelta(days=settings.check_retention_days)
            async with self.session_factory() as session:
                deleted = await CheckRepository(session).delete_older_than(cutoff)
                await retry_on_transient(session.commit)
            logger.info(f"Cleaned up {deleted} old check records")
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")
