"""
PostgreSQL schema for the monitoring store.

All statements are idempotent so ``apply_schema`` can run at every start.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from signal_sentinel.storage.database import Database

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS monitoring_rules (
        id TEXT PRIMARY KEY,
        merchant TEXT NOT NULL,
        name TEXT NOT NULL,
        subject_pattern TEXT NOT NULL,
        expected_interval_minutes INTEGER NOT NULL CHECK (expected_interval_minutes > 0),
        dead_after_minutes INTEGER NOT NULL CHECK (dead_after_minutes > 0),
        tags TEXT[] NOT NULL DEFAULT '{}',
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CHECK (dead_after_minutes >= expected_interval_minutes * 1.5)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_monitoring_rules_merchant ON monitoring_rules(merchant)",
    "CREATE INDEX IF NOT EXISTS idx_monitoring_rules_enabled ON monitoring_rules(enabled)",
    """
    CREATE TABLE IF NOT EXISTS signal_states (
        rule_id TEXT PRIMARY KEY REFERENCES monitoring_rules(id) ON DELETE CASCADE,
        state TEXT NOT NULL DEFAULT 'DEAD',
        last_seen_at TIMESTAMPTZ,
        count_1h INTEGER NOT NULL DEFAULT 0,
        count_12h INTEGER NOT NULL DEFAULT 0,
        count_24h INTEGER NOT NULL DEFAULT 0,
        transition_seq BIGINT NOT NULL DEFAULT 0,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "ALTER TABLE signal_states ADD COLUMN IF NOT EXISTS transition_seq BIGINT NOT NULL DEFAULT 0",
    """
    CREATE TABLE IF NOT EXISTS hit_logs (
        id BIGSERIAL PRIMARY KEY,
        rule_id TEXT NOT NULL REFERENCES monitoring_rules(id) ON DELETE CASCADE,
        sender TEXT NOT NULL,
        subject TEXT NOT NULL,
        recipient TEXT NOT NULL,
        received_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_hit_logs_rule_received ON hit_logs(rule_id, received_at)",
    "CREATE INDEX IF NOT EXISTS idx_hit_logs_created_at ON hit_logs(created_at)",
    """
    CREATE TABLE IF NOT EXISTS alerts (
        id TEXT PRIMARY KEY,
        rule_id TEXT NOT NULL REFERENCES monitoring_rules(id) ON DELETE CASCADE,
        alert_type TEXT NOT NULL,
        previous_state TEXT NOT NULL,
        current_state TEXT NOT NULL,
        gap_minutes INTEGER,
        count_1h INTEGER NOT NULL DEFAULT 0,
        count_12h INTEGER NOT NULL DEFAULT 0,
        count_24h INTEGER NOT NULL DEFAULT 0,
        message TEXT NOT NULL,
        epoch_key TEXT NOT NULL,
        sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_alerts_rule_id ON alerts(rule_id)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_created_at ON alerts(created_at)",
    # One alert per rule, alert type and state transition, across processes
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_transition
        ON alerts(rule_id, alert_type, epoch_key)
    """,
    """
    CREATE TABLE IF NOT EXISTS heartbeat_logs (
        id BIGSERIAL PRIMARY KEY,
        checked_at TIMESTAMPTZ NOT NULL,
        rules_checked INTEGER NOT NULL,
        state_changes INTEGER NOT NULL,
        alerts_triggered INTEGER NOT NULL,
        duration_ms INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_heartbeat_logs_checked_at ON heartbeat_logs(checked_at)",
    """
    CREATE TABLE IF NOT EXISTS ratio_monitors (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        tag TEXT NOT NULL,
        first_rule_id TEXT NOT NULL REFERENCES monitoring_rules(id) ON DELETE CASCADE,
        second_rule_id TEXT NOT NULL REFERENCES monitoring_rules(id) ON DELETE CASCADE,
        steps JSONB NOT NULL DEFAULT '[]',
        threshold_percent DOUBLE PRECISION NOT NULL,
        time_window TEXT NOT NULL DEFAULT '24h',
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ratio_monitors_tag ON ratio_monitors(tag)",
    """
    CREATE TABLE IF NOT EXISTS ratio_states (
        monitor_id TEXT PRIMARY KEY REFERENCES ratio_monitors(id) ON DELETE CASCADE,
        state TEXT NOT NULL DEFAULT 'HEALTHY',
        first_count INTEGER NOT NULL DEFAULT 0,
        second_count INTEGER NOT NULL DEFAULT 0,
        current_ratio DOUBLE PRECISION NOT NULL DEFAULT 0,
        steps_data JSONB NOT NULL DEFAULT '[]',
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ratio_alerts (
        id TEXT PRIMARY KEY,
        monitor_id TEXT NOT NULL REFERENCES ratio_monitors(id) ON DELETE CASCADE,
        alert_type TEXT NOT NULL,
        previous_state TEXT NOT NULL,
        current_state TEXT NOT NULL,
        first_count INTEGER NOT NULL,
        second_count INTEGER NOT NULL,
        current_ratio DOUBLE PRECISION NOT NULL,
        message TEXT NOT NULL,
        sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ratio_alerts_created_at ON ratio_alerts(created_at)",
    """
    CREATE TABLE IF NOT EXISTS system_logs (
        id BIGSERIAL PRIMARY KEY,
        category TEXT NOT NULL,
        message TEXT NOT NULL,
        details JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_system_logs_created_at ON system_logs(created_at)",
    """
    CREATE TABLE IF NOT EXISTS cleanup_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
)

# Child tables first so a reset never trips a foreign key
MONITORING_TABLES: tuple[str, ...] = (
    "ratio_alerts",
    "ratio_states",
    "ratio_monitors",
    "alerts",
    "hit_logs",
    "signal_states",
    "monitoring_rules",
    "heartbeat_logs",
    "system_logs",
    "cleanup_settings",
)


async def apply_schema(db: "Database") -> None:
    """Create all monitoring tables and indexes if they do not exist."""
    async with db.transaction() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info(f"Schema applied ({len(SCHEMA_STATEMENTS)} statements)")
