"""
Alert generation for signal state transitions.

Turns a transition into a persisted Alert and a Telegram notification,
with deduplication so the same transition is never alerted twice.
"""
from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import Optional

from signal_sentinel.monitoring.dedup import TTLCache
from signal_sentinel.monitoring.notifier import NotificationDispatcher
from signal_sentinel.monitoring.state_calculator import determine_alert_type, gap_to_int
from signal_sentinel.storage.models import (
    Alert,
    AlertType,
    MonitoringRule,
    SignalState,
    SignalStatus,
)
from signal_sentinel.storage.repositories import AlertRepository, utcnow

logger = logging.getLogger(__name__)

STATE_ICONS = {
    SignalState.ACTIVE: "🟢",
    SignalState.WEAK: "🟡",
    SignalState.DEAD: "🔴",
}

ALERT_LABELS = {
    AlertType.FREQUENCY_DOWN: "Frequency down",
    AlertType.SIGNAL_DEAD: "Signal dead",
    AlertType.SIGNAL_RECOVERED: "Signal recovered",
}

NOTIFICATION_TITLES = {
    AlertType.FREQUENCY_DOWN: "Frequency down alert",
    AlertType.SIGNAL_DEAD: "Signal dead alert",
    AlertType.SIGNAL_RECOVERED: "Signal recovered",
}

NEVER_SEEN_EPOCH = "never"


def format_gap(gap_minutes: float) -> str:
    """
    Humanise a gap: ``45m ago``, ``2h ago``, ``2h 30m ago`` or ``never``.

    A negative gap (last_seen_at slightly in the future) reads as ``0m ago``.
    """
    if math.isinf(gap_minutes):
        return "never"
    gap = max(0, int(gap_minutes))
    if gap < 60:
        return f"{gap}m ago"
    hours, minutes = divmod(gap, 60)
    if minutes == 0:
        return f"{hours}h ago"
    return f"{hours}h {minutes}m ago"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_alert_message(
    rule: MonitoringRule,
    alert_type: AlertType,
    previous_state: SignalState,
    current_state: SignalState,
    gap_minutes: float,
    count_1h: int,
    count_12h: int,
    count_24h: int,
    last_seen_at: Optional[datetime] = None,
) -> str:
    """Build the alert body stored on the Alert and sent to Telegram."""
    gap = format_gap(gap_minutes)
    last_seen = f"{format_timestamp(last_seen_at)} ({gap})" if last_seen_at else gap
    return (
        f"[{ALERT_LABELS[alert_type]}] {rule.merchant} / {rule.name}\n"
        f"State: {STATE_ICONS[previous_state]} {previous_state.value} → "
        f"{STATE_ICONS[current_state]} {current_state.value}\n"
        f"Last seen: {last_seen}\n"
        f"24h: {count_24h} | 12h: {count_12h} | 1h: {count_1h}"
    )


def format_status_line(status: SignalStatus) -> str:
    """One-line summary of a signal for listings."""
    return (
        f"{STATE_ICONS[status.state]} {status.rule.merchant} / {status.rule.name} "
        f"last: {format_gap(status.gap_minutes)} | 24h: {status.count_24h} "
        f"| 12h: {status.count_12h} | 1h: {status.count_1h}"
    )


def epoch_key_for(
    last_seen_at: Optional[datetime], transition_seq: Optional[int] = None
) -> str:
    """
    Identify one transition: the silence period it belongs to plus the
    state row's transition sequence number after the write.
    """
    period = last_seen_at.isoformat() if last_seen_at is not None else NEVER_SEEN_EPOCH
    if transition_seq is None:
        return period
    return f"{period}#{transition_seq}"


class AlertGenerator:
    """
    Creates, persists and dispatches signal alerts.

    Usage:
        generator = AlertGenerator(alert_repo, dispatcher)
        alert = await generator.create_alert(
            rule, SignalState.ACTIVE, SignalState.DEAD,
            gap_minutes=130, count_1h=0, count_12h=2, count_24h=9,
            last_seen_at=state.last_seen_at,
        )

    Deduplication:
        A transition is keyed by (rule, alert type, last_seen_at, transition
        sequence). The key is checked against an in-process TTL cache and
        enforced by a unique index in the database, so a retried write or a
        second scheduler process cannot alert the same transition twice,
        while a later transition of the same silence period (after a rule
        edit, say) still alerts.
    """

    def __init__(
        self,
        alert_repo: AlertRepository,
        dispatcher: NotificationDispatcher,
        dedup_cache: Optional[TTLCache] = None,
    ) -> None:
        self._alert_repo = alert_repo
        self._dispatcher = dispatcher
        self._dedup = dedup_cache or TTLCache()

    async def create_alert(
        self,
        rule: MonitoringRule,
        previous_state: SignalState,
        current_state: SignalState,
        gap_minutes: float,
        count_1h: int,
        count_12h: int,
        count_24h: int,
        last_seen_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        transition_seq: Optional[int] = None,
    ) -> Optional[Alert]:
        """
        Record and dispatch an alert for a transition.

        Returns the created alert, or None if the transition raises no alert,
        was deduplicated, or could not be stored. Never raises.
        """
        alert_type = determine_alert_type(previous_state, current_state)
        if alert_type is None:
            return None

        epoch_key = epoch_key_for(last_seen_at, transition_seq)
        dedup_key = f"{rule.id}:{alert_type.value}:{epoch_key}"
        if not self._dedup.should_send(dedup_key):
            logger.debug(f"Deduplicated alert: {dedup_key}")
            return None

        message = format_alert_message(
            rule,
            alert_type,
            previous_state,
            current_state,
            gap_minutes,
            count_1h,
            count_12h,
            count_24h,
            last_seen_at,
        )
        alert = Alert(
            id=str(uuid.uuid4()),
            rule_id=rule.id,
            alert_type=alert_type,
            previous_state=previous_state,
            current_state=current_state,
            gap_minutes=gap_to_int(gap_minutes),
            count_1h=count_1h,
            count_12h=count_12h,
            count_24h=count_24h,
            message=message,
            epoch_key=epoch_key,
            created_at=now or utcnow(),
        )

        try:
            created = await self._alert_repo.create(alert)
        except Exception as e:
            logger.error(f"Failed to store {alert_type.value} alert for rule {rule.id}: {e}")
            return None

        self._dedup.record(dedup_key)
        if created is None:
            logger.info(f"Alert already recorded for {dedup_key}, not re-sending")
            return None

        logger.info(
            f"{alert_type.value}: {rule.merchant} / {rule.name} "
            f"({previous_state.value} -> {current_state.value})"
        )
        self._dispatcher.submit(
            NOTIFICATION_TITLES[alert_type],
            created.message,
            alert_type=alert_type.value,
            on_sent=lambda: self._alert_repo.mark_sent(created.id),
        )
        return created

    async def get_alerts(
        self,
        rule_id: Optional[str] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 100,
    ) -> list[Alert]:
        return await self._alert_repo.get_all(
            rule_id=rule_id, alert_type=alert_type, limit=limit
        )

    async def get_unsent_alerts(self, limit: int = 100) -> list[Alert]:
        return await self._alert_repo.get_unsent(limit=limit)

    async def mark_sent(self, alert_id: str) -> bool:
        return await self._alert_repo.mark_sent(alert_id)
