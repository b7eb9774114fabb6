"""
Service wiring.

Builds every repository and service once from a Database and hands them
around explicitly. Nothing here is module-level state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from signal_sentinel.core.scheduler import MonitoringScheduler, SchedulerConfig
from signal_sentinel.monitoring.alerting import AlertGenerator
from signal_sentinel.monitoring.cleanup import CleanupConfig, CleanupService
from signal_sentinel.monitoring.dedup import TTLCache
from signal_sentinel.monitoring.heartbeat import HeartbeatService
from signal_sentinel.monitoring.notifier import (
    NotificationDispatcher,
    TelegramConfig,
    TelegramNotifier,
)
from signal_sentinel.monitoring.ratio import RatioMonitorService
from signal_sentinel.monitoring.rules import RuleService
from signal_sentinel.monitoring.signal_state import SignalStateService
from signal_sentinel.storage.database import Database
from signal_sentinel.storage.repositories import (
    AlertRepository,
    CleanupSettingsRepository,
    HeartbeatLogRepository,
    HitLogRepository,
    MonitoringRuleRepository,
    RatioAlertRepository,
    RatioMonitorRepository,
    RatioStateRepository,
    SignalStateRepository,
    SystemLogRepository,
)


@dataclass
class MonitoringSettings:
    """Tunables for the services (not the scheduler)."""

    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    notification_timeout_seconds: float = 10.0
    alert_dedup_ttl_seconds: float = 3600
    alert_dedup_max_size: int = 10_000
    max_concurrent_rules: int = 8
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)


@dataclass
class MonitoringServices:
    """All monitoring services sharing one database and one dispatcher."""

    db: Database
    dispatcher: NotificationDispatcher
    alert_generator: AlertGenerator
    rules: RuleService
    signal_state: SignalStateService
    heartbeat: HeartbeatService
    ratio: RatioMonitorService
    cleanup: CleanupService

    @classmethod
    def build(
        cls,
        db: Database,
        settings: Optional[MonitoringSettings] = None,
        notifier: Optional[TelegramNotifier] = None,
    ) -> "MonitoringServices":
        settings = settings or MonitoringSettings()

        rule_repo = MonitoringRuleRepository(db)
        state_repo = SignalStateRepository(db)
        hit_log_repo = HitLogRepository(db)
        alert_repo = AlertRepository(db)
        ratio_alert_repo = RatioAlertRepository(db)
        heartbeat_log_repo = HeartbeatLogRepository(db)
        system_log_repo = SystemLogRepository(db)

        notifier = notifier or TelegramNotifier(
            settings.telegram, timeout=settings.notification_timeout_seconds
        )
        dispatcher = NotificationDispatcher(
            notifier, timeout_seconds=settings.notification_timeout_seconds
        )
        alert_generator = AlertGenerator(
            alert_repo,
            dispatcher,
            TTLCache(
                ttl_seconds=settings.alert_dedup_ttl_seconds,
                max_size=settings.alert_dedup_max_size,
            ),
        )

        return cls(
            db=db,
            dispatcher=dispatcher,
            alert_generator=alert_generator,
            rules=RuleService(rule_repo),
            signal_state=SignalStateService(
                state_repo, rule_repo, hit_log_repo, alert_generator
            ),
            heartbeat=HeartbeatService(
                rule_repo,
                state_repo,
                heartbeat_log_repo,
                alert_generator,
                max_concurrent_rules=settings.max_concurrent_rules,
            ),
            ratio=RatioMonitorService(
                RatioMonitorRepository(db),
                RatioStateRepository(db),
                ratio_alert_repo,
                rule_repo,
                state_repo,
                dispatcher,
            ),
            cleanup=CleanupService(
                hit_log_repo,
                alert_repo,
                ratio_alert_repo,
                heartbeat_log_repo,
                system_log_repo,
                CleanupSettingsRepository(db),
                config=settings.cleanup,
            ),
        )

    def create_scheduler(self, config: Optional[SchedulerConfig] = None) -> MonitoringScheduler:
        return MonitoringScheduler(
            heartbeat_service=self.heartbeat,
            ratio_service=self.ratio,
            cleanup_service=self.cleanup,
            config=config,
        )
