"""
Signal state service: hits, status queries and counter maintenance.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from signal_sentinel.monitoring.errors import NotFoundError
from signal_sentinel.monitoring.state_calculator import (
    calculate_state_for_rule,
    determine_alert_type,
)
from signal_sentinel.storage.models import (
    AlertType,
    HitMetadata,
    MonitoringRule,
    SignalState,
    SignalStateRecord,
    SignalStatus,
)
from signal_sentinel.storage.repositories import (
    HitLogRepository,
    MonitoringRuleRepository,
    SignalStateRepository,
    utcnow,
)

if TYPE_CHECKING:
    from signal_sentinel.monitoring.alerting import AlertGenerator

logger = logging.getLogger(__name__)

# Worst state first in listings
STATE_PRIORITY = {
    SignalState.DEAD: 0,
    SignalState.WEAK: 1,
    SignalState.ACTIVE: 2,
}


@dataclass(frozen=True)
class StateChange:
    """A rule's transition as observed by a hit or a heartbeat pass."""

    rule_id: str
    previous_state: SignalState
    current_state: SignalState
    alert_type: Optional[AlertType] = None

    @property
    def alert_triggered(self) -> bool:
        return self.alert_type is not None


def build_status(
    rule: MonitoringRule, record: SignalStateRecord, now: datetime
) -> SignalStatus:
    """Join a rule and its stored state, recomputing gap and state at ``now``."""
    state, gap = calculate_state_for_rule(record.last_seen_at, rule, now)
    return SignalStatus(
        rule=rule,
        state=state,
        last_seen_at=record.last_seen_at,
        gap_minutes=gap,
        count_1h=record.count_1h,
        count_12h=record.count_12h,
        count_24h=record.count_24h,
        updated_at=record.updated_at,
    )


def sort_statuses(statuses: list[SignalStatus]) -> list[SignalStatus]:
    """DEAD, then WEAK, then ACTIVE; newest rule first within a state."""
    by_newest = sorted(statuses, key=lambda s: s.rule.created_at, reverse=True)
    return sorted(by_newest, key=lambda s: STATE_PRIORITY[s.state])


class SignalStateService:
    """
    Owns every write to signal state outside the heartbeat pass.

    Usage:
        service = SignalStateService(state_repo, rule_repo, hit_log_repo, alert_generator)
        change = await service.record_hit(rule_id, hit_time=received_at, hit=metadata)
    """

    def __init__(
        self,
        state_repo: SignalStateRepository,
        rule_repo: MonitoringRuleRepository,
        hit_log_repo: HitLogRepository,
        alert_generator: Optional["AlertGenerator"] = None,
    ) -> None:
        self._state_repo = state_repo
        self._rule_repo = rule_repo
        self._hit_log_repo = hit_log_repo
        self._alert_generator = alert_generator

    async def record_hit(
        self,
        rule_id: str,
        hit_time: Optional[datetime] = None,
        hit: Optional[HitMetadata] = None,
        now: Optional[datetime] = None,
    ) -> StateChange:
        """
        Record an observed signal for ``rule_id``.

        The previous state is recomputed from the stored last_seen_at rather
        than read from the (possibly stale) stored state. A recovery raises
        SIGNAL_RECOVERED.

        Raises:
            NotFoundError: the rule does not exist
        """
        now = now or utcnow()
        hit_time = hit_time or (hit.received_at if hit is not None else now)

        rule = await self._rule_repo.get_by_id(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)

        result = await self._state_repo.record_hit(rule_id, hit_time, hit)
        if result is None:
            raise NotFoundError("Signal state", rule_id)
        before, after = result

        previous_state, previous_gap = calculate_state_for_rule(
            before.last_seen_at, rule, now
        )
        alert_type = determine_alert_type(previous_state, SignalState.ACTIVE)
        change = StateChange(
            rule_id=rule_id,
            previous_state=previous_state,
            current_state=SignalState.ACTIVE,
            alert_type=alert_type,
        )

        if alert_type is not None and self._alert_generator is not None:
            # The alert describes the silence that just ended
            await self._alert_generator.create_alert(
                rule,
                previous_state,
                SignalState.ACTIVE,
                previous_gap,
                after.count_1h,
                after.count_12h,
                after.count_24h,
                last_seen_at=before.last_seen_at,
                now=now,
                transition_seq=after.transition_seq,
            )

        logger.debug(
            f"Hit for rule {rule_id}: {previous_state.value} -> ACTIVE "
            f"(24h={after.count_24h})"
        )
        return change

    async def get_status(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> Optional[SignalStatus]:
        joined = await self._state_repo.get_with_rule(rule_id)
        if joined is None:
            return None
        rule, record = joined
        return build_status(rule, record, now or utcnow())

    async def get_all_statuses(
        self, enabled_only: bool = False, now: Optional[datetime] = None
    ) -> list[SignalStatus]:
        now = now or utcnow()
        joined = await self._state_repo.get_all_with_rules(enabled_only=enabled_only)
        return sort_statuses([build_status(rule, record, now) for rule, record in joined])

    async def recalculate_counters(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> tuple[int, int, int]:
        """Rebuild a rule's rolling counters from its hit log."""
        now = now or utcnow()
        counts = await self._hit_log_repo.count_windows(rule_id, now)
        await self._state_repo.set_counters(rule_id, *counts)
        return counts

    async def recalculate_all_counters(self, now: Optional[datetime] = None) -> int:
        """Rebuild counters for every enabled rule. Returns rules updated."""
        now = now or utcnow()
        updated = 0
        for rule in await self._rule_repo.get_enabled():
            try:
                await self.recalculate_counters(rule.id, now)
                updated += 1
            except Exception as e:
                logger.error(f"Counter recalculation failed for rule {rule.id}: {e}")
        return updated
