"""
Monitoring Layer - Signal liveness, ratio monitoring and alerting.

This module provides:
    - state_calculator: Pure gap/state/alert-type functions
    - RuleService: Rule CRUD with validation
    - SignalStateService: Hits, status views, counter recalculation
    - HeartbeatService: Periodic re-evaluation of every enabled rule
    - AlertGenerator: Transition alerts with deduplication
    - RatioMonitorService: Two-counter ratio monitors with funnel view
    - CleanupService: Retention sweep of operational tables
    - TelegramNotifier / NotificationDispatcher: Alert delivery

Alert Deduplication:
    - A transition is alerted once per (rule, alert type, silence period)
    - Enforced in-process by TTLCache and across processes by a unique index
"""

from .alerting import AlertGenerator, format_alert_message, format_gap, format_status_line
from .cleanup import CleanupConfig, CleanupResult, CleanupService, CleanupTarget
from .dedup import TTLCache
from .errors import (
    ErrorCode,
    FieldError,
    MonitoringError,
    NotFoundError,
    RatioMonitorValidationError,
    RuleValidationError,
)
from .heartbeat import HeartbeatResult, HeartbeatService
from .notifier import NotificationDispatcher, TelegramConfig, TelegramNotifier
from .ratio import (
    RatioCheckResult,
    RatioMonitorCreate,
    RatioMonitorService,
    RatioMonitorUpdate,
    calculate_ratio,
    calculate_ratio_state,
)
from .rules import RuleCreate, RuleService, RuleUpdate
from .signal_state import SignalStateService, StateChange
from .state_calculator import (
    calculate_gap_minutes,
    calculate_signal_state,
    calculate_state_for_rule,
    determine_alert_type,
)

__all__ = [
    # State calculation
    "calculate_gap_minutes",
    "calculate_signal_state",
    "calculate_state_for_rule",
    "determine_alert_type",
    # Rules and state
    "RuleService",
    "RuleCreate",
    "RuleUpdate",
    "SignalStateService",
    "StateChange",
    # Heartbeat
    "HeartbeatService",
    "HeartbeatResult",
    # Alerting
    "AlertGenerator",
    "TTLCache",
    "format_alert_message",
    "format_gap",
    "format_status_line",
    "TelegramConfig",
    "TelegramNotifier",
    "NotificationDispatcher",
    # Ratio
    "RatioMonitorService",
    "RatioMonitorCreate",
    "RatioMonitorUpdate",
    "RatioCheckResult",
    "calculate_ratio",
    "calculate_ratio_state",
    # Cleanup
    "CleanupService",
    "CleanupConfig",
    "CleanupResult",
    "CleanupTarget",
    # Errors
    "MonitoringError",
    "ErrorCode",
    "FieldError",
    "RuleValidationError",
    "RatioMonitorValidationError",
    "NotFoundError",
]
