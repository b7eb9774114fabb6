"""
Monitoring layer test fixtures.

Services are exercised against in-memory repositories that honour the same
contracts as the PostgreSQL ones (compare-and-set, unique alert key,
cascade on delete), so no database is needed here.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from signal_sentinel.monitoring.alerting import AlertGenerator
from signal_sentinel.monitoring.cleanup import CleanupService
from signal_sentinel.monitoring.dedup import TTLCache
from signal_sentinel.monitoring.heartbeat import HeartbeatService
from signal_sentinel.monitoring.ratio import RatioMonitorService
from signal_sentinel.monitoring.rules import RuleService
from signal_sentinel.monitoring.signal_state import SignalStateService
from signal_sentinel.storage.models import (
    Alert,
    HeartbeatLog,
    HitLog,
    MonitoringRule,
    RatioAlert,
    RatioMonitor,
    RatioStateRecord,
    SignalState,
    SignalStateRecord,
    SystemLog,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryStore:
    """Shared tables for the fake repositories."""

    def __init__(self):
        self.rules: dict[str, MonitoringRule] = {}
        self.states: dict[str, SignalStateRecord] = {}
        self.hit_logs: list[HitLog] = []
        self.alerts: dict[str, Alert] = {}
        self.monitors: dict[str, RatioMonitor] = {}
        self.ratio_states: dict[str, RatioStateRecord] = {}
        self.ratio_alerts: dict[str, RatioAlert] = {}
        self.heartbeat_logs: list[HeartbeatLog] = []
        self.system_logs: list[SystemLog] = []
        self.settings: dict[str, str] = {}


class FakeRuleRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, rule):
        self.store.rules[rule.id] = rule
        self.store.states[rule.id] = SignalStateRecord(
            rule_id=rule.id, updated_at=rule.created_at
        )
        return rule

    async def update(self, rule):
        if rule.id not in self.store.rules:
            return None
        self.store.rules[rule.id] = rule
        return rule

    async def get_by_id(self, rule_id):
        return self.store.rules.get(rule_id)

    async def exists(self, rule_id):
        return rule_id in self.store.rules

    async def delete(self, rule_id):
        if self.store.rules.pop(rule_id, None) is None:
            return False
        self.store.states.pop(rule_id, None)
        self.store.hit_logs = [h for h in self.store.hit_logs if h.rule_id != rule_id]
        self.store.alerts = {
            k: a for k, a in self.store.alerts.items() if a.rule_id != rule_id
        }
        return True

    async def get_enabled(self):
        rules = [r for r in self.store.rules.values() if r.enabled]
        return sorted(rules, key=lambda r: r.created_at)

    async def get_all(self, merchant=None, enabled=None, tag=None):
        rules = list(self.store.rules.values())
        if merchant is not None:
            rules = [r for r in rules if r.merchant == merchant]
        if enabled is not None:
            rules = [r for r in rules if r.enabled == enabled]
        if tag is not None:
            rules = [r for r in rules if tag in r.tags]
        return sorted(rules, key=lambda r: r.created_at, reverse=True)


class FakeSignalStateRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.failing_rule_ids: set[str] = set()
        self.cas_calls = 0

    async def get(self, rule_id):
        if rule_id in self.failing_rule_ids:
            raise RuntimeError(f"storage failure for {rule_id}")
        return self.store.states.get(rule_id)

    async def get_with_rule(self, rule_id):
        if rule_id not in self.store.states:
            return None
        return self.store.rules[rule_id], self.store.states[rule_id]

    async def get_all_with_rules(self, enabled_only=False):
        return [
            (self.store.rules[rule_id], state)
            for rule_id, state in self.store.states.items()
            if not enabled_only or self.store.rules[rule_id].enabled
        ]

    async def compare_and_set_state(
        self, rule_id, expected_state, expected_last_seen_at, new_state, now=None
    ):
        self.cas_calls += 1
        record = self.store.states.get(rule_id)
        if (
            record is None
            or record.state != expected_state
            or record.last_seen_at != expected_last_seen_at
        ):
            return None
        updated = record.model_copy(
            update={
                "state": new_state,
                "updated_at": now or NOW,
                "transition_seq": record.transition_seq + 1,
            }
        )
        self.store.states[rule_id] = updated
        return updated

    async def record_hit(self, rule_id, hit_time, hit=None):
        before = self.store.states.get(rule_id)
        if before is None:
            return None
        after = before.model_copy(
            update={
                "last_seen_at": hit_time,
                "state": SignalState.ACTIVE,
                "count_1h": before.count_1h + 1,
                "count_12h": before.count_12h + 1,
                "count_24h": before.count_24h + 1,
                "transition_seq": before.transition_seq + 1,
                "updated_at": hit_time,
            }
        )
        self.store.states[rule_id] = after
        if hit is not None:
            self.store.hit_logs.append(
                HitLog(
                    id=len(self.store.hit_logs) + 1,
                    rule_id=rule_id,
                    sender=hit.sender,
                    subject=hit.subject,
                    recipient=hit.recipient,
                    received_at=hit.received_at,
                    created_at=hit_time,
                )
            )
        return before, after

    async def set_counters(self, rule_id, count_1h, count_12h, count_24h):
        record = self.store.states.get(rule_id)
        if record is None:
            return False
        self.store.states[rule_id] = record.model_copy(
            update={"count_1h": count_1h, "count_12h": count_12h, "count_24h": count_24h}
        )
        return True

    def set_state(self, rule_id, **fields):
        """Test helper: overwrite stored fields directly."""
        self.store.states[rule_id] = self.store.states[rule_id].model_copy(update=fields)


class FakeHitLogRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def count_windows(self, rule_id, now):
        received = [
            h.received_at
            for h in self.store.hit_logs
            if h.rule_id == rule_id and now - timedelta(hours=24) <= h.received_at <= now
        ]
        return (
            sum(1 for r in received if r >= now - timedelta(hours=1)),
            sum(1 for r in received if r >= now - timedelta(hours=12)),
            len(received),
        )

    async def delete_older_than(self, cutoff):
        before = len(self.store.hit_logs)
        self.store.hit_logs = [h for h in self.store.hit_logs if h.created_at >= cutoff]
        return before - len(self.store.hit_logs)


class FakeAlertRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.create_error: Optional[Exception] = None

    async def create(self, alert):
        if self.create_error is not None:
            raise self.create_error
        for existing in self.store.alerts.values():
            if (existing.rule_id, existing.alert_type, existing.epoch_key) == (
                alert.rule_id,
                alert.alert_type,
                alert.epoch_key,
            ):
                return None
        self.store.alerts[alert.id] = alert
        return alert

    async def get_all(self, rule_id=None, alert_type=None, since=None, limit=100):
        alerts = [
            a
            for a in self.store.alerts.values()
            if (rule_id is None or a.rule_id == rule_id)
            and (alert_type is None or a.alert_type == alert_type)
        ]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)[:limit]

    async def get_unsent(self, limit=100):
        return [a for a in self.store.alerts.values() if a.sent_at is None][:limit]

    async def mark_sent(self, alert_id, sent_at=None):
        alert = self.store.alerts.get(alert_id)
        if alert is None or alert.sent_at is not None:
            return False
        self.store.alerts[alert_id] = alert.model_copy(update={"sent_at": sent_at or NOW})
        return True

    async def delete_older_than(self, cutoff):
        old = [k for k, a in self.store.alerts.items() if a.created_at < cutoff]
        for key in old:
            del self.store.alerts[key]
        return len(old)


class FakeRatioMonitorRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, monitor):
        self.store.monitors[monitor.id] = monitor
        return monitor

    async def update(self, monitor):
        if monitor.id not in self.store.monitors:
            return None
        self.store.monitors[monitor.id] = monitor
        return monitor

    async def get_by_id(self, monitor_id):
        return self.store.monitors.get(monitor_id)

    async def delete(self, monitor_id):
        return self.store.monitors.pop(monitor_id, None) is not None

    async def get_enabled(self):
        return [m for m in self.store.monitors.values() if m.enabled]

    async def get_all(self, tag=None, enabled=None):
        return [
            m
            for m in self.store.monitors.values()
            if (tag is None or m.tag == tag) and (enabled is None or m.enabled == enabled)
        ]

    async def get_all_tags(self):
        return sorted({m.tag for m in self.store.monitors.values()})


class FakeRatioStateRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, monitor_id):
        return self.store.ratio_states.get(monitor_id)

    async def upsert(self, state):
        self.store.ratio_states[state.monitor_id] = state
        return state


class FakeRatioAlertRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.create_error: Optional[Exception] = None

    async def create(self, alert):
        if self.create_error is not None:
            raise self.create_error
        self.store.ratio_alerts[alert.id] = alert
        return alert

    async def get_all(self, monitor_id=None, limit=100):
        alerts = [
            a
            for a in self.store.ratio_alerts.values()
            if monitor_id is None or a.monitor_id == monitor_id
        ]
        return alerts[:limit]

    async def mark_sent(self, alert_id, sent_at=None):
        alert = self.store.ratio_alerts.get(alert_id)
        if alert is None or alert.sent_at is not None:
            return False
        self.store.ratio_alerts[alert_id] = alert.model_copy(update={"sent_at": sent_at or NOW})
        return True

    async def delete_older_than(self, cutoff):
        old = [k for k, a in self.store.ratio_alerts.items() if a.created_at < cutoff]
        for key in old:
            del self.store.ratio_alerts[key]
        return len(old)


class FakeHeartbeatLogRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.create_error: Optional[Exception] = None

    async def create(self, log):
        if self.create_error is not None:
            raise self.create_error
        self.store.heartbeat_logs.append(log)
        return log

    async def delete_older_than(self, cutoff):
        before = len(self.store.heartbeat_logs)
        self.store.heartbeat_logs = [
            h for h in self.store.heartbeat_logs if h.checked_at >= cutoff
        ]
        return before - len(self.store.heartbeat_logs)


class FakeSystemLogRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, category, message, details=None):
        log = SystemLog(
            id=len(self.store.system_logs) + 1,
            category=category,
            message=message,
            details=details or {},
            created_at=NOW,
        )
        self.store.system_logs.append(log)
        return log

    async def delete_older_than(self, cutoff):
        before = len(self.store.system_logs)
        self.store.system_logs = [s for s in self.store.system_logs if s.created_at >= cutoff]
        return before - len(self.store.system_logs)


class FakeSettingsRepo:
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_all(self):
        return dict(self.store.settings)

    async def set_many(self, values):
        for key, value in values.items():
            self.store.settings[key] = str(value)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; keeps every submission."""

    def __init__(self):
        self.submitted: list[dict] = []

    def submit(self, title, body, alert_type=None, on_sent=None):
        self.submitted.append(
            {"title": title, "body": body, "alert_type": alert_type, "on_sent": on_sent}
        )
        return None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def rule_repo(store):
    return FakeRuleRepo(store)


@pytest.fixture
def state_repo(store):
    return FakeSignalStateRepo(store)


@pytest.fixture
def hit_log_repo(store):
    return FakeHitLogRepo(store)


@pytest.fixture
def alert_repo(store):
    return FakeAlertRepo(store)


@pytest.fixture
def heartbeat_log_repo(store):
    return FakeHeartbeatLogRepo(store)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def alert_generator(alert_repo, dispatcher):
    return AlertGenerator(alert_repo, dispatcher, TTLCache(ttl_seconds=3600))


@pytest.fixture
def rule_service(rule_repo):
    return RuleService(rule_repo)


@pytest.fixture
def signal_state_service(state_repo, rule_repo, hit_log_repo, alert_generator):
    return SignalStateService(state_repo, rule_repo, hit_log_repo, alert_generator)


@pytest.fixture
def heartbeat_service(rule_repo, state_repo, heartbeat_log_repo, alert_generator):
    return HeartbeatService(
        rule_repo, state_repo, heartbeat_log_repo, alert_generator, max_concurrent_rules=4
    )


@pytest.fixture
def ratio_alert_repo(store):
    return FakeRatioAlertRepo(store)


@pytest.fixture
def ratio_service(store, rule_repo, state_repo, dispatcher, ratio_alert_repo):
    return RatioMonitorService(
        FakeRatioMonitorRepo(store),
        FakeRatioStateRepo(store),
        ratio_alert_repo,
        rule_repo,
        state_repo,
        dispatcher,
    )


@pytest.fixture
def cleanup_repos(store):
    return {
        "hit_logs": FakeHitLogRepo(store),
        "alerts": FakeAlertRepo(store),
        "ratio_alerts": FakeRatioAlertRepo(store),
        "heartbeat_logs": FakeHeartbeatLogRepo(store),
        "system_logs": FakeSystemLogRepo(store),
        "settings": FakeSettingsRepo(store),
    }


@pytest.fixture
def cleanup_service(cleanup_repos):
    return CleanupService(
        cleanup_repos["hit_logs"],
        cleanup_repos["alerts"],
        cleanup_repos["ratio_alerts"],
        cleanup_repos["heartbeat_logs"],
        cleanup_repos["system_logs"],
        cleanup_repos["settings"],
    )


@pytest.fixture
def make_rule(rule_repo):
    """Create a rule directly in the store (bypassing validation)."""
    counter = {"n": 0}

    async def _make(
        merchant="acme",
        name=None,
        expected_interval_minutes=60,
        dead_after_minutes=120,
        enabled=True,
        tags=None,
        created_at=None,
    ):
        counter["n"] += 1
        n = counter["n"]
        created = created_at or NOW - timedelta(days=1) + timedelta(minutes=n)
        rule = MonitoringRule(
            id=f"rule-{n}",
            merchant=merchant,
            name=name or f"signal {n}",
            subject_pattern="^Order",
            expected_interval_minutes=expected_interval_minutes,
            dead_after_minutes=dead_after_minutes,
            tags=tags or [],
            enabled=enabled,
            created_at=created,
            updated_at=created,
        )
        return await rule_repo.create(rule)

    return _make
