"""
Storage Layer - Async PostgreSQL database and repositories.

This is the foundation layer that all other components depend on.
Built on asyncpg for async database access.

Public API:
    Database, DatabaseConfig - Connection pool management
    apply_schema - Idempotent table creation

    Models:
        MonitoringRule, SignalStateRecord, SignalStatus
        Alert, RatioAlert
        RatioMonitor, FunnelStep, RatioStateRecord, RatioStatus
        HitLog, HitMetadata, HeartbeatLog, SystemLog

    Repositories:
        MonitoringRuleRepository, SignalStateRepository, HitLogRepository
        AlertRepository, RatioAlertRepository
        RatioMonitorRepository, RatioStateRepository
        HeartbeatLogRepository, SystemLogRepository, CleanupSettingsRepository
"""
from signal_sentinel.storage.database import Database, DatabaseConfig
from signal_sentinel.storage.models import (
    Alert,
    AlertType,
    FunnelStep,
    FunnelStepStatus,
    HeartbeatLog,
    HitLog,
    HitMetadata,
    MonitoringRule,
    RatioAlert,
    RatioAlertType,
    RatioMonitor,
    RatioState,
    RatioStateRecord,
    RatioStatus,
    SignalState,
    SignalStateRecord,
    SignalStatus,
    StepCount,
    SystemLog,
    TimeWindow,
)
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
from signal_sentinel.storage.schema import MONITORING_TABLES, apply_schema

__all__ = [
    # Database
    "Database",
    "DatabaseConfig",
    "apply_schema",
    "MONITORING_TABLES",
    # Enums
    "SignalState",
    "AlertType",
    "RatioState",
    "RatioAlertType",
    "TimeWindow",
    # Models
    "MonitoringRule",
    "SignalStateRecord",
    "SignalStatus",
    "HitLog",
    "HitMetadata",
    "Alert",
    "RatioAlert",
    "FunnelStep",
    "StepCount",
    "RatioMonitor",
    "RatioStateRecord",
    "FunnelStepStatus",
    "RatioStatus",
    "HeartbeatLog",
    "SystemLog",
    # Repositories
    "MonitoringRuleRepository",
    "SignalStateRepository",
    "HitLogRepository",
    "AlertRepository",
    "RatioAlertRepository",
    "RatioMonitorRepository",
    "RatioStateRepository",
    "HeartbeatLogRepository",
    "SystemLogRepository",
    "CleanupSettingsRepository",
]
