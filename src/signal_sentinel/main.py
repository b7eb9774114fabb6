"""
Signal Sentinel - Main Entry Point

Runs the monitoring scheduler: periodic heartbeat passes, ratio checks and
the daily retention cleanup.

Usage:
    python -m signal_sentinel.main                    # Run the scheduler
    python -m signal_sentinel.main --once heartbeat   # One heartbeat pass, then exit
    python -m signal_sentinel.main --once ratio       # One ratio check
    python -m signal_sentinel.main --once cleanup     # One cleanup sweep
    python -m signal_sentinel.main --once status      # Print signal status lines

Environment Variables:
    DATABASE_URL                    PostgreSQL connection string (required)
    LOG_LEVEL                       Logging level (DEBUG/INFO/WARNING/ERROR)
    HEARTBEAT_INTERVAL_SECONDS      Heartbeat period (default: 300)
    RUN_HEARTBEAT_ON_START          Run a pass immediately (default: false)
    RATIO_CHECK_INTERVAL_SECONDS    Ratio period, 0 = after each heartbeat (default: 0)
    CLEANUP_ENABLED                 Enable the retention sweep (default: true)
    CLEANUP_CRON                    Cleanup schedule (default: "0 3 * * *")
    HIT_LOGS_RETENTION_HOURS        24-168 (default: 72)
    ALERTS_RETENTION_DAYS           7-365 (default: 90)
    RATIO_ALERTS_RETENTION_DAYS     7-365 (default: 90)
    HEARTBEAT_LOGS_RETENTION_DAYS   1-90 (default: 30)
    SYSTEM_LOGS_RETENTION_DAYS      1-365 (default: 30)
    MAX_CONCURRENT_RULES            Heartbeat fan-out (default: 8)
    TELEGRAM_BOT_TOKEN              Telegram bot token for alerts
    TELEGRAM_CHAT_ID                Telegram chat ID for alerts
    NOTIFICATION_TIMEOUT_SECONDS    Per-notification timeout (default: 10)
    ALERT_DEDUP_TTL_SECONDS         In-process dedup window (default: 3600)
    SENTINEL_PID_FILE               Singleton lock file (default: /tmp/signal-sentinel.pid)
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

from signal_sentinel.core import MonitoringScheduler, MonitoringServices, MonitoringSettings, SchedulerConfig
from signal_sentinel.monitoring import CleanupConfig, TelegramConfig, format_status_line
from signal_sentinel.storage import Database, DatabaseConfig, apply_schema

# Configure logging before anything logs
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_PID_FILE = "/tmp/signal-sentinel.pid"


class SingletonError(Exception):
    """Raised when another scheduler instance is already running."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Ensure only one scheduler process runs per host.

    Uses a non-blocking exclusive flock on the PID file. A second scheduler
    would otherwise run every heartbeat twice.

    Raises:
        SingletonError: If another instance holds the lock
    """
    pid_path = Path(pid_file)

    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    # "a+" so the file is not truncated before we own the lock
    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonError(
                f"Another scheduler is already running (PID: {existing_pid}). "
                f"Stop it with: kill {existing_pid}"
            )
        raise SingletonError("Another scheduler is already running.")

    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Ignoring error releasing lock: {e}")

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class AppConfig:
    """Complete process configuration."""

    database_url: str = ""

    # Scheduler
    heartbeat_interval_seconds: float = 300
    run_heartbeat_on_start: bool = False
    ratio_check_interval_seconds: float = 0
    cleanup_enabled: bool = True
    cleanup_cron: str = "0 3 * * *"

    # Retention
    hit_logs_retention_hours: int = 72
    alerts_retention_days: int = 90
    ratio_alerts_retention_days: int = 90
    heartbeat_logs_retention_days: int = 30
    system_logs_retention_days: int = 30

    # Monitoring
    max_concurrent_rules: int = 8
    notification_timeout_seconds: float = 10
    alert_dedup_ttl_seconds: float = 3600

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    pid_file: str = DEFAULT_PID_FILE

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            heartbeat_interval_seconds=float(os.environ.get("HEARTBEAT_INTERVAL_SECONDS", "300")),
            run_heartbeat_on_start=_env_bool("RUN_HEARTBEAT_ON_START", "false"),
            ratio_check_interval_seconds=float(os.environ.get("RATIO_CHECK_INTERVAL_SECONDS", "0")),
            cleanup_enabled=_env_bool("CLEANUP_ENABLED", "true"),
            cleanup_cron=os.environ.get("CLEANUP_CRON", "0 3 * * *"),
            hit_logs_retention_hours=int(os.environ.get("HIT_LOGS_RETENTION_HOURS", "72")),
            alerts_retention_days=int(os.environ.get("ALERTS_RETENTION_DAYS", "90")),
            ratio_alerts_retention_days=int(os.environ.get("RATIO_ALERTS_RETENTION_DAYS", "90")),
            heartbeat_logs_retention_days=int(os.environ.get("HEARTBEAT_LOGS_RETENTION_DAYS", "30")),
            system_logs_retention_days=int(os.environ.get("SYSTEM_LOGS_RETENTION_DAYS", "30")),
            max_concurrent_rules=int(os.environ.get("MAX_CONCURRENT_RULES", "8")),
            notification_timeout_seconds=float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "10")),
            alert_dedup_ttl_seconds=float(os.environ.get("ALERT_DEDUP_TTL_SECONDS", "3600")),
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
            pid_file=os.environ.get("SENTINEL_PID_FILE", DEFAULT_PID_FILE),
        )

    def cleanup_config(self) -> CleanupConfig:
        """Retention windows; raises pydantic.ValidationError when out of range."""
        return CleanupConfig(
            hit_logs_retention_hours=self.hit_logs_retention_hours,
            alerts_retention_days=self.alerts_retention_days,
            ratio_alerts_retention_days=self.ratio_alerts_retention_days,
            heartbeat_logs_retention_days=self.heartbeat_logs_retention_days,
            system_logs_retention_days=self.system_logs_retention_days,
        )

    def monitoring_settings(self) -> MonitoringSettings:
        return MonitoringSettings(
            telegram=TelegramConfig(
                bot_token=self.telegram_bot_token,
                chat_id=self.telegram_chat_id,
            ),
            notification_timeout_seconds=self.notification_timeout_seconds,
            alert_dedup_ttl_seconds=self.alert_dedup_ttl_seconds,
            max_concurrent_rules=self.max_concurrent_rules,
            cleanup=self.cleanup_config(),
        )

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            heartbeat_interval_seconds=self.heartbeat_interval_seconds,
            run_heartbeat_on_start=self.run_heartbeat_on_start,
            ratio_check_interval_seconds=self.ratio_check_interval_seconds,
            cleanup_enabled=self.cleanup_enabled,
            cleanup_cron=self.cleanup_cron,
        )


class SentinelApp:
    """
    Process orchestrator.

    Manages the lifecycle of:
    - Database connection and schema
    - Monitoring services
    - Background scheduler
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self._shutdown_event = asyncio.Event()
        self._db: Optional[Database] = None
        self._services: Optional[MonitoringServices] = None
        self._scheduler: Optional[MonitoringScheduler] = None

    async def _init(self) -> MonitoringServices:
        if not self.config.database_url:
            raise ValueError("DATABASE_URL environment variable is required")

        self._db = Database(DatabaseConfig(url=self.config.database_url))
        await self._db.initialize()
        if not await self._db.health_check():
            raise RuntimeError("Database health check failed")
        logger.info("Database: Connected")

        await apply_schema(self._db)

        self._services = MonitoringServices.build(
            self._db, self.config.monitoring_settings()
        )
        if not self.config.telegram_bot_token or not self.config.telegram_chat_id:
            logger.warning("Telegram not configured, alerts will be stored but not sent")
        return self._services

    async def run(self) -> None:
        """Run the scheduler until SIGINT/SIGTERM."""
        logger.info("=" * 60)
        logger.info("SIGNAL SENTINEL")
        logger.info("=" * 60)

        try:
            services = await self._init()
            self._scheduler = services.create_scheduler(self.config.scheduler_config())
            self._setup_signal_handlers()
            await self._scheduler.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def run_once(self, job: str) -> int:
        """Run a single job and exit."""
        try:
            services = await self._init()
            scheduler = services.create_scheduler(self.config.scheduler_config())

            if job == "heartbeat":
                result = await scheduler.run_heartbeat()
            elif job == "ratio":
                result = await scheduler.run_ratio_check()
            elif job == "cleanup":
                result = await scheduler.run_cleanup()
            else:
                for status in await services.signal_state.get_all_statuses():
                    print(format_status_line(status))
                return 0

            return 0 if result is not None else 1
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop gracefully: scheduler, pending notifications, then the database."""
        if self._scheduler is not None:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")
            self._scheduler = None

        if self._services is not None:
            try:
                await self._services.dispatcher.drain(
                    timeout=self.config.notification_timeout_seconds
                )
            except Exception as e:
                logger.warning(f"Error draining notifications: {e}")
            self._services = None

        if self._db is not None:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")
            self._db = None

        logger.info("Shutdown complete")

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Signal liveness and ratio monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--once",
        choices=["heartbeat", "ratio", "cleanup", "status"],
        help="Run a single job and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    config = AppConfig.from_env()

    if not config.database_url:
        logger.error("DATABASE_URL environment variable is required")
        return 1

    app = SentinelApp(config)
    try:
        if args.once:
            return await app.run_once(args.once)
        await app.run()
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Read-only status queries may run next to the scheduler
    if args.once == "status":
        return asyncio.run(main_async(args))

    try:
        with singleton_lock(os.environ.get("SENTINEL_PID_FILE", DEFAULT_PID_FILE)):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonError as e:
        logger.error(str(e))
        print(f"\n❌ {e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
