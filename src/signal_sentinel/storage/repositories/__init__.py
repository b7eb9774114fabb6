"""
Repository exports.

All repositories for the signal monitoring store.
"""
from signal_sentinel.storage.repositories.alert_repo import (
    AlertRepository,
    RatioAlertRepository,
)
from signal_sentinel.storage.repositories.base import BaseRepository, utcnow
from signal_sentinel.storage.repositories.log_repo import (
    CleanupSettingsRepository,
    HeartbeatLogRepository,
    SystemLogRepository,
)
from signal_sentinel.storage.repositories.ratio_repo import (
    RatioMonitorRepository,
    RatioStateRepository,
)
from signal_sentinel.storage.repositories.rule_repo import MonitoringRuleRepository
from signal_sentinel.storage.repositories.signal_state_repo import (
    HitLogRepository,
    SignalStateRepository,
)

__all__ = [
    "BaseRepository",
    "utcnow",
    # Rules & state
    "MonitoringRuleRepository",
    "SignalStateRepository",
    "HitLogRepository",
    # Alerts
    "AlertRepository",
    "RatioAlertRepository",
    # Ratio monitors
    "RatioMonitorRepository",
    "RatioStateRepository",
    # Audit
    "HeartbeatLogRepository",
    "SystemLogRepository",
    "CleanupSettingsRepository",
]
