"""
Pure signal state calculation.

No I/O, no clock reads: every function takes ``now`` explicitly so the
heartbeat, the hit path and the status views agree on the same rules.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from signal_sentinel.storage.models import AlertType, MonitoringRule, SignalState

# A signal is still ACTIVE while the gap is within this multiple of its interval
ACTIVE_TOLERANCE = 1.5


def calculate_gap_minutes(last_seen_at: Optional[datetime], now: datetime) -> float:
    """
    Whole minutes elapsed since the signal was last seen.

    Returns ``math.inf`` if the signal has never been seen.
    """
    if last_seen_at is None:
        return math.inf
    return float(math.floor((now - last_seen_at).total_seconds() / 60))


def calculate_signal_state(
    gap_minutes: float, expected_interval_minutes: int, dead_after_minutes: int
) -> SignalState:
    """Classify a gap against a rule's thresholds."""
    if gap_minutes <= expected_interval_minutes * ACTIVE_TOLERANCE:
        return SignalState.ACTIVE
    if gap_minutes <= dead_after_minutes:
        return SignalState.WEAK
    return SignalState.DEAD


def calculate_state_for_rule(
    last_seen_at: Optional[datetime], rule: MonitoringRule, now: datetime
) -> tuple[SignalState, float]:
    """Return (state, gap_minutes) for a rule at ``now``."""
    gap = calculate_gap_minutes(last_seen_at, now)
    state = calculate_signal_state(
        gap, rule.expected_interval_minutes, rule.dead_after_minutes
    )
    return state, gap


def determine_alert_type(
    previous: SignalState, current: SignalState
) -> Optional[AlertType]:
    """
    Map a state transition to the alert it raises.

    DEAD -> WEAK (a late signal after a long silence) raises nothing; the
    next hit moves it to ACTIVE and raises SIGNAL_RECOVERED instead.
    """
    if previous == current:
        return None
    if current == SignalState.DEAD:
        return AlertType.SIGNAL_DEAD
    if current == SignalState.ACTIVE:
        return AlertType.SIGNAL_RECOVERED
    if previous == SignalState.ACTIVE and current == SignalState.WEAK:
        return AlertType.FREQUENCY_DOWN
    return None


def gap_to_int(gap_minutes: float) -> Optional[int]:
    """Storage form of a gap: None stands for 'never seen'."""
    if math.isinf(gap_minutes):
        return None
    return int(gap_minutes)
