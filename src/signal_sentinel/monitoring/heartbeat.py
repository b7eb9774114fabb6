"""
Heartbeat pass: re-evaluate every enabled rule against the clock.

Signals that stop arriving never trigger a hit, so degradation is only
ever detected here. A pass is idempotent for a fixed ``now``: rules whose
computed state equals the stored state are not written and raise nothing.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from signal_sentinel.monitoring.alerting import AlertGenerator
from signal_sentinel.monitoring.signal_state import StateChange
from signal_sentinel.monitoring.state_calculator import (
    calculate_state_for_rule,
    determine_alert_type,
)
from signal_sentinel.storage.models import HeartbeatLog, MonitoringRule
from signal_sentinel.storage.repositories import (
    HeartbeatLogRepository,
    MonitoringRuleRepository,
    SignalStateRepository,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class HeartbeatResult:
    """Summary of one heartbeat pass."""

    checked_at: datetime
    rules_checked: int = 0
    state_changes: list[StateChange] = field(default_factory=list)
    alerts_triggered: int = 0
    failed_rules: int = 0
    duration_ms: int = 0


@dataclass
class _RuleOutcome:
    change: Optional[StateChange] = None
    alerted: bool = False
    failed: bool = False


class HeartbeatService:
    """
    Runs heartbeat passes.

    Usage:
        service = HeartbeatService(rule_repo, state_repo, heartbeat_log_repo, generator)
        result = await service.run()
    """

    def __init__(
        self,
        rule_repo: MonitoringRuleRepository,
        state_repo: SignalStateRepository,
        heartbeat_log_repo: HeartbeatLogRepository,
        alert_generator: AlertGenerator,
        max_concurrent_rules: int = 8,
    ) -> None:
        self._rule_repo = rule_repo
        self._state_repo = state_repo
        self._heartbeat_log_repo = heartbeat_log_repo
        self._alert_generator = alert_generator
        self._max_concurrent = max(1, max_concurrent_rules)

    async def run(self, now: Optional[datetime] = None) -> HeartbeatResult:
        """
        Evaluate all enabled rules once.

        A rule that fails is logged and counted in ``failed_rules``; the pass
        continues with the others. One HeartbeatLog row is written at the end.
        """
        now = now or utcnow()
        started = time.monotonic()
        result = HeartbeatResult(checked_at=now)

        rules = await self._rule_repo.get_enabled()
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _bounded(rule: MonitoringRule) -> _RuleOutcome:
            async with semaphore:
                return await self._check_rule(rule, now)

        outcomes = await asyncio.gather(*(_bounded(rule) for rule in rules))
        result.rules_checked = len(rules)

        for outcome in outcomes:
            if outcome.failed:
                result.failed_rules += 1
                continue
            if outcome.change is not None:
                result.state_changes.append(outcome.change)
            if outcome.alerted:
                result.alerts_triggered += 1

        result.duration_ms = int((time.monotonic() - started) * 1000)
        await self._write_log(result)

        logger.info(
            f"Heartbeat: {result.rules_checked} rules checked, "
            f"{len(result.state_changes)} changes, {result.alerts_triggered} alerts, "
            f"{result.failed_rules} failed ({result.duration_ms}ms)"
        )
        return result

    async def _check_rule(self, rule: MonitoringRule, now: datetime) -> _RuleOutcome:
        try:
            record = await self._state_repo.get(rule.id)
            if record is None:
                logger.warning(f"Rule {rule.id} has no signal state, skipping")
                return _RuleOutcome(failed=True)

            new_state, gap = calculate_state_for_rule(record.last_seen_at, rule, now)
            if new_state == record.state:
                return _RuleOutcome()

            updated = await self._state_repo.compare_and_set_state(
                rule.id, record.state, record.last_seen_at, new_state, now
            )
            if updated is None:
                logger.info(f"Rule {rule.id} changed during heartbeat, leaving it to the next pass")
                return _RuleOutcome()

            alert_type = determine_alert_type(record.state, new_state)
            change = StateChange(
                rule_id=rule.id,
                previous_state=record.state,
                current_state=new_state,
                alert_type=alert_type,
            )
            logger.info(
                f"Rule {rule.merchant} / {rule.name}: "
                f"{record.state.value} -> {new_state.value} (gap={gap})"
            )

            alerted = False
            if alert_type is not None:
                alert = await self._alert_generator.create_alert(
                    rule,
                    record.state,
                    new_state,
                    gap,
                    updated.count_1h,
                    updated.count_12h,
                    updated.count_24h,
                    last_seen_at=updated.last_seen_at,
                    now=now,
                    transition_seq=updated.transition_seq,
                )
                alerted = alert is not None

            return _RuleOutcome(change=change, alerted=alerted)

        except Exception as e:
            logger.error(f"Heartbeat failed for rule {rule.id}: {e}")
            return _RuleOutcome(failed=True)

    async def _write_log(self, result: HeartbeatResult) -> None:
        try:
            await self._heartbeat_log_repo.create(
                HeartbeatLog(
                    checked_at=result.checked_at,
                    rules_checked=result.rules_checked,
                    state_changes=len(result.state_changes),
                    alerts_triggered=result.alerts_triggered,
                    duration_ms=result.duration_ms,
                )
            )
        except Exception as e:
            logger.error(f"Failed to write heartbeat log: {e}")
