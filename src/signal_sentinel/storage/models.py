"""
Pydantic models matching the monitoring PostgreSQL schema (see schema.py).

Table names and field names match the database columns so rows can be
loaded with ``Model(**dict(record))``.

Enumerations are closed sets: every state and alert type the engine can
produce is listed here and nowhere else.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMERATIONS
# =============================================================================


class SignalState(str, Enum):
    """Liveness of a monitored signal."""

    ACTIVE = "ACTIVE"
    WEAK = "WEAK"
    DEAD = "DEAD"


class AlertType(str, Enum):
    """Signal alert raised on a significant state transition."""

    FREQUENCY_DOWN = "FREQUENCY_DOWN"
    SIGNAL_DEAD = "SIGNAL_DEAD"
    SIGNAL_RECOVERED = "SIGNAL_RECOVERED"


class RatioState(str, Enum):
    """Health of a ratio/funnel monitor."""

    HEALTHY = "HEALTHY"
    LOW = "LOW"


class RatioAlertType(str, Enum):
    RATIO_LOW = "RATIO_LOW"
    RATIO_RECOVERED = "RATIO_RECOVERED"


class TimeWindow(str, Enum):
    """Rolling window a ratio monitor reads its counters from."""

    ONE_HOUR = "1h"
    TWELVE_HOURS = "12h"
    TWENTY_FOUR_HOURS = "24h"


# =============================================================================
# MONITORING RULES & SIGNAL STATE
# =============================================================================


class MonitoringRule(BaseModel):
    """A recurring signal to watch."""

    id: str
    merchant: str
    name: str
    subject_pattern: str
    expected_interval_minutes: int
    dead_after_minutes: int
    tags: list[str] = Field(default_factory=list)
    enabled: bool = True
    created_at: datetime
    updated_at: datetime


class SignalStateRecord(BaseModel):
    """Stored liveness record, one per rule."""

    rule_id: str
    state: SignalState = SignalState.DEAD
    last_seen_at: Optional[datetime] = None
    count_1h: int = 0
    count_12h: int = 0
    count_24h: int = 0
    # Bumped by every state write; identifies one transition
    transition_seq: int = 0
    updated_at: datetime

    def count_for(self, window: TimeWindow) -> int:
        """Counter value for a rolling window."""
        if window is TimeWindow.ONE_HOUR:
            return self.count_1h
        if window is TimeWindow.TWELVE_HOURS:
            return self.count_12h
        return self.count_24h


class SignalStatus(BaseModel):
    """Rule configuration joined with live state and a freshly computed gap."""

    rule: MonitoringRule
    state: SignalState
    last_seen_at: Optional[datetime] = None
    gap_minutes: float
    count_1h: int = 0
    count_12h: int = 0
    count_24h: int = 0
    updated_at: datetime

    @property
    def rule_id(self) -> str:
        return self.rule.id


class HitLog(BaseModel):
    """Raw audit row for a single observed signal hit."""

    id: Optional[int] = None
    rule_id: str
    sender: str
    subject: str
    recipient: str
    received_at: datetime
    created_at: Optional[datetime] = None


class HitMetadata(BaseModel):
    """Event metadata handed over by the ingestion path with a hit."""

    model_config = ConfigDict(frozen=True)

    sender: str
    subject: str
    recipient: str
    received_at: datetime


# =============================================================================
# ALERTS
# =============================================================================


class Alert(BaseModel):
    """Immutable record of a detected signal transition."""

    id: str
    rule_id: str
    alert_type: AlertType
    previous_state: SignalState
    current_state: SignalState
    gap_minutes: Optional[int] = None  # None when the signal was never seen
    count_1h: int = 0
    count_12h: int = 0
    count_24h: int = 0
    message: str
    epoch_key: str
    sent_at: Optional[datetime] = None
    created_at: datetime


class RatioAlert(BaseModel):
    """Immutable record of a ratio threshold crossing."""

    id: str
    monitor_id: str
    alert_type: RatioAlertType
    previous_state: RatioState
    current_state: RatioState
    first_count: int
    second_count: int
    current_ratio: float
    message: str
    sent_at: Optional[datetime] = None
    created_at: datetime


# =============================================================================
# RATIO MONITORS
# =============================================================================


class FunnelStep(BaseModel):
    """Additional funnel step, shown for diagnostics only."""

    rule_id: str
    order: int
    threshold_percent: float = Field(ge=0, le=100)


class StepCount(BaseModel):
    rule_id: str
    count: int = 0


class RatioMonitor(BaseModel):
    """Compares two correlated rule counters against a threshold."""

    id: str
    name: str
    tag: str
    first_rule_id: str
    second_rule_id: str
    steps: list[FunnelStep] = Field(default_factory=list)
    threshold_percent: float
    time_window: TimeWindow = TimeWindow.TWENTY_FOUR_HOURS
    enabled: bool = True
    created_at: datetime
    updated_at: datetime


class RatioStateRecord(BaseModel):
    monitor_id: str
    state: RatioState = RatioState.HEALTHY
    first_count: int = 0
    second_count: int = 0
    current_ratio: float = 0.0
    steps_data: list[StepCount] = Field(default_factory=list)
    updated_at: datetime


class FunnelStepStatus(BaseModel):
    """Per-step view of a funnel for display."""

    order: int
    rule_id: str
    rule_name: str
    count: int
    ratio_to_first: float
    ratio_to_previous: float
    state: RatioState


class RatioStatus(BaseModel):
    monitor: RatioMonitor
    state: RatioState
    first_rule_name: str
    second_rule_name: str
    first_count: int
    second_count: int
    current_ratio: float
    funnel_steps: list[FunnelStepStatus] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


# =============================================================================
# AUDIT LOGS
# =============================================================================


class HeartbeatLog(BaseModel):
    """Append-only summary of one heartbeat pass."""

    id: Optional[int] = None
    checked_at: datetime
    rules_checked: int
    state_changes: int
    alerts_triggered: int
    duration_ms: int


class SystemLog(BaseModel):
    """Audit entry for background housekeeping (e.g. a cleanup sweep)."""

    id: Optional[int] = None
    category: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
