"""
MonitoringScheduler - Drives the periodic monitoring passes.

Handles:
- Heartbeat pass (fixed rate)
- Ratio check (after every heartbeat, or on its own interval)
- Retention cleanup (cron expression, daily by default)

Each job is guarded against overlapping itself: a tick that fires while
the previous pass of the same job is still running is skipped.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from signal_sentinel.monitoring.cleanup import CleanupResult, CleanupService
    from signal_sentinel.monitoring.heartbeat import HeartbeatResult, HeartbeatService
    from signal_sentinel.monitoring.ratio import RatioCheckResult, RatioMonitorService

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Configuration for the monitoring scheduler."""

    heartbeat_interval_seconds: float = 300  # 5 minutes
    run_heartbeat_on_start: bool = False

    # 0 runs the ratio check right after every heartbeat pass
    ratio_check_interval_seconds: float = 0
    ratio_check_enabled: bool = True

    cleanup_enabled: bool = True
    cleanup_cron: str = "0 3 * * *"

    shutdown_timeout_seconds: float = 30


def next_cron_time(cron: str, now: datetime) -> datetime:
    """Next fire time of a five-field crontab expression, in UTC."""
    trigger = CronTrigger.from_crontab(cron, timezone=timezone.utc)
    return trigger.get_next_fire_time(None, now)


class _Job:
    """A named unit of work that never runs concurrently with itself."""

    def __init__(self, name: str, func: Callable[[], Awaitable[Any]]) -> None:
        self.name = name
        self._func = func
        self._lock = asyncio.Lock()
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_started: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> Optional[Any]:
        """Run once. Returns None if skipped or failed."""
        if self._lock.locked():
            self.skipped += 1
            logger.warning(f"{self.name} still running, skipping this tick")
            return None

        async with self._lock:
            self.runs += 1
            self.last_started = datetime.now(timezone.utc)
            try:
                return await self._func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.error(f"Error in {self.name}: {e}")
                return None


class MonitoringScheduler:
    """
    Runs heartbeat, ratio and cleanup passes in the background.

    Usage:
        scheduler = MonitoringScheduler(
            heartbeat_service=heartbeat,
            ratio_service=ratio,
            cleanup_service=cleanup,
            config=SchedulerConfig(),
        )
        await scheduler.start()
        # ... service runs ...
        await scheduler.stop()
    """

    def __init__(
        self,
        heartbeat_service: "HeartbeatService",
        ratio_service: Optional["RatioMonitorService"] = None,
        cleanup_service: Optional["CleanupService"] = None,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        self._heartbeat_service = heartbeat_service
        self._ratio_service = ratio_service
        self._cleanup_service = cleanup_service
        self._config = config or SchedulerConfig()

        if self._config.cleanup_enabled:
            # Fail fast on a bad expression
            CronTrigger.from_crontab(self._config.cleanup_cron, timezone=timezone.utc)

        self._heartbeat_job = _Job("heartbeat", self._heartbeat_pass)
        self._ratio_job = _Job("ratio check", self._ratio_pass)
        self._cleanup_job = _Job("cleanup", self._cleanup_pass)

        self._running = False
        self._stop_event = asyncio.Event()
        self._loops: list[asyncio.Task] = []
        self._passes: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def ratio_follows_heartbeat(self) -> bool:
        return (
            self._ratio_service is not None
            and self._config.ratio_check_enabled
            and self._config.ratio_check_interval_seconds <= 0
        )

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {
            job.name: {
                "running": job.running,
                "runs": job.runs,
                "skipped": job.skipped,
                "failures": job.failures,
                "last_started": job.last_started,
            }
            for job in (self._heartbeat_job, self._ratio_job, self._cleanup_job)
        }

    # -------------------------------------------------------------------------
    # Public entry points (also used by --once)
    # -------------------------------------------------------------------------

    async def run_heartbeat(self) -> Optional["HeartbeatResult"]:
        return await self._heartbeat_job.run()

    async def run_ratio_check(self) -> Optional["RatioCheckResult"]:
        if self._ratio_service is None:
            return None
        return await self._ratio_job.run()

    async def run_cleanup(self) -> Optional["CleanupResult"]:
        if self._cleanup_service is None:
            return None
        return await self._cleanup_job.run()

    async def _heartbeat_pass(self) -> "HeartbeatResult":
        result = await self._heartbeat_service.run()
        if self.ratio_follows_heartbeat:
            await self.run_ratio_check()
        return result

    async def _ratio_pass(self) -> "RatioCheckResult":
        return await self._ratio_service.check_all()

    async def _cleanup_pass(self) -> "CleanupResult":
        return await self._cleanup_service.run()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start all background loops."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._stop_event.clear()

        if self._config.run_heartbeat_on_start:
            self._spawn(self.run_heartbeat())

        self._loops.append(
            asyncio.create_task(
                self._interval_loop(
                    self.run_heartbeat, self._config.heartbeat_interval_seconds
                ),
                name="heartbeat_loop",
            )
        )
        logger.info(
            f"Started heartbeat task (interval={self._config.heartbeat_interval_seconds}s)"
        )

        if (
            self._ratio_service is not None
            and self._config.ratio_check_enabled
            and self._config.ratio_check_interval_seconds > 0
        ):
            self._loops.append(
                asyncio.create_task(
                    self._interval_loop(
                        self.run_ratio_check, self._config.ratio_check_interval_seconds
                    ),
                    name="ratio_check_loop",
                )
            )
            logger.info(
                f"Started ratio check task "
                f"(interval={self._config.ratio_check_interval_seconds}s)"
            )
        elif self.ratio_follows_heartbeat:
            logger.info("Ratio check runs after each heartbeat")

        if self._cleanup_service is not None and self._config.cleanup_enabled:
            self._loops.append(
                asyncio.create_task(self._cleanup_loop(), name="cleanup_loop")
            )
            logger.info(f"Started cleanup task (cron='{self._config.cleanup_cron}')")

        logger.info(f"Scheduler started: {len(self._loops)} tasks")

    async def stop(self) -> None:
        """Stop the loops and let in-flight passes finish (bounded by the shutdown timeout)."""
        if not self._running:
            return

        logger.info("Stopping scheduler...")
        self._running = False
        self._stop_event.set()

        for task in self._loops:
            if not task.done():
                task.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()

        if self._passes:
            _, pending = await asyncio.wait(
                list(self._passes), timeout=self._config.shutdown_timeout_seconds
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(f"Cancelled {len(pending)} unfinished passes")

        logger.info("Scheduler stopped")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    async def _wait_or_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, timeout))
            return True
        except asyncio.TimeoutError:
            return False

    async def _interval_loop(
        self, run: Callable[[], Awaitable[Any]], interval: float
    ) -> None:
        """Fixed-rate ticks; the pass runs as its own task so a slow pass does not delay the clock."""
        while self._running:
            try:
                if await self._wait_or_stop(interval):
                    break
                if not self._running:
                    break
                self._spawn(run())
            except asyncio.CancelledError:
                break

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                now = datetime.now(timezone.utc)
                fire_at = next_cron_time(self._config.cleanup_cron, now)
                delay = (fire_at - now).total_seconds()
                logger.debug(f"Next cleanup at {fire_at.isoformat()}")

                if await self._wait_or_stop(delay):
                    break
                if not self._running:
                    break
                self._spawn(self.run_cleanup())
                # Step past the fire time so the same slot is not picked again
                await self._wait_or_stop(1)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup scheduling: {e}")
                await asyncio.sleep(5)
