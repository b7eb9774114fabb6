"""
Monitoring rule repository.

Handles:
- monitoring_rules: Rule configuration
- signal_states: Created together with each rule (one row per rule)
"""
from __future__ import annotations

from typing import Optional

from signal_sentinel.storage.models import MonitoringRule, SignalState
from signal_sentinel.storage.repositories.base import BaseRepository


class MonitoringRuleRepository(BaseRepository[MonitoringRule]):
    """Repository for monitoring rules."""

    table_name = "monitoring_rules"
    model_class = MonitoringRule

    async def create(self, rule: MonitoringRule) -> MonitoringRule:
        """
        Insert a rule and its initial signal state atomically.

        The signal starts DEAD with no last-seen timestamp.
        """
        async with self.db.transaction() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO monitoring_rules
                (id, merchant, name, subject_pattern, expected_interval_minutes,
                 dead_after_minutes, tags, enabled, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
                """,
                rule.id,
                rule.merchant,
                rule.name,
                rule.subject_pattern,
                rule.expected_interval_minutes,
                rule.dead_after_minutes,
                list(rule.tags),
                rule.enabled,
                rule.created_at,
                rule.updated_at,
            )
            await conn.execute(
                """
                INSERT INTO signal_states (rule_id, state, last_seen_at, updated_at)
                VALUES ($1, $2, NULL, $3)
                """,
                rule.id,
                SignalState.DEAD.value,
                rule.created_at,
            )
        return self._to_model(record)

    async def update(self, rule: MonitoringRule) -> Optional[MonitoringRule]:
        """Persist every mutable field of ``rule``. Returns None if it no longer exists."""
        query = """
            UPDATE monitoring_rules
            SET merchant = $2,
                name = $3,
                subject_pattern = $4,
                expected_interval_minutes = $5,
                dead_after_minutes = $6,
                tags = $7,
                enabled = $8,
                updated_at = $9
            WHERE id = $1
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            rule.id,
            rule.merchant,
            rule.name,
            rule.subject_pattern,
            rule.expected_interval_minutes,
            rule.dead_after_minutes,
            list(rule.tags),
            rule.enabled,
            rule.updated_at,
        )
        return self._to_model(record)

    async def get_enabled(self) -> list[MonitoringRule]:
        """Get all enabled rules."""
        query = "SELECT * FROM monitoring_rules WHERE enabled = TRUE ORDER BY created_at"
        records = await self.db.fetch(query)
        return self._to_models(records)

    async def get_all(
        self,
        merchant: Optional[str] = None,
        enabled: Optional[bool] = None,
        tag: Optional[str] = None,
    ) -> list[MonitoringRule]:
        """Get rules, optionally filtered by merchant, enabled flag or tag."""
        conditions: list[str] = []
        args: list = []

        if merchant is not None:
            args.append(merchant)
            conditions.append(f"merchant = ${len(args)}")
        if enabled is not None:
            args.append(enabled)
            conditions.append(f"enabled = ${len(args)}")
        if tag is not None:
            args.append(tag)
            conditions.append(f"${len(args)} = ANY(tags)")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"SELECT * FROM monitoring_rules {where} ORDER BY created_at DESC"
        records = await self.db.fetch(query, *args)
        return self._to_models(records)
