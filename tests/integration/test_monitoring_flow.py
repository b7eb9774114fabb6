"""
End-to-end monitoring flow against a live database.

rule created -> hit recorded -> silence detected by heartbeat -> alerts stored
"""
from datetime import timedelta

import pytest

from signal_sentinel.core import MonitoringServices, SchedulerConfig
from signal_sentinel.monitoring.rules import RuleCreate
from signal_sentinel.storage.models import AlertType, HitMetadata, SignalState
from signal_sentinel.storage.repositories import (
    AlertRepository,
    HeartbeatLogRepository,
    utcnow,
)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def create_rule(services: MonitoringServices):
    return await services.rules.create(
        RuleCreate(
            merchant="acme",
            name="order confirmation",
            subject_pattern="^Order",
            expected_interval_minutes=60,
            dead_after_minutes=120,
            tags=["orders"],
        )
    )


class TestSignalLifecycle:
    """A rule goes quiet and the heartbeat notices."""

    async def test_hit_then_silence_raises_dead_alert(self, db):
        services = MonitoringServices.build(db)
        rule = await create_rule(services)
        now = utcnow()
        hit_time = now - timedelta(hours=3)

        change = await services.signal_state.record_hit(
            rule.id,
            hit=HitMetadata(
                sender="shop@acme.test",
                subject="Order #1001",
                recipient="ops@acme.test",
                received_at=hit_time,
            ),
            now=now,
        )
        result = await services.heartbeat.run(now=now)
        await services.dispatcher.drain(timeout=1)

        assert change.current_state == SignalState.ACTIVE
        assert result.rules_checked == 1
        assert [c.current_state for c in result.state_changes] == [SignalState.DEAD]

        status = await services.signal_state.get_status(rule.id, now=now)
        assert status.state == SignalState.DEAD
        assert status.count_24h == 1

        alerts = await AlertRepository(db).get_all(rule_id=rule.id)
        assert {a.alert_type for a in alerts} == {
            AlertType.SIGNAL_RECOVERED,
            AlertType.SIGNAL_DEAD,
        }

    async def test_repeated_heartbeat_is_quiet(self, db):
        services = MonitoringServices.build(db)
        rule = await create_rule(services)
        now = utcnow()
        await services.signal_state.record_hit(
            rule.id, hit_time=now - timedelta(minutes=90), now=now
        )

        first = await services.heartbeat.run(now=now)
        second = await services.heartbeat.run(now=now)

        assert [c.current_state for c in first.state_changes] == [SignalState.WEAK]
        assert second.state_changes == []
        assert await HeartbeatLogRepository(db).count() == 2


class TestScheduledJobs:
    async def test_once_jobs_complete(self, db):
        services = MonitoringServices.build(db)
        await create_rule(services)
        scheduler = services.create_scheduler(SchedulerConfig(cleanup_enabled=False))

        heartbeat = await scheduler.run_heartbeat()
        cleanup = await scheduler.run_cleanup()

        assert heartbeat.rules_checked == 1
        assert cleanup.errors == {}
