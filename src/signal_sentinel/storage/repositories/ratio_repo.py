"""
Ratio monitor repositories.

Handles:
- ratio_monitors: Funnel configuration (steps stored as JSONB)
- ratio_states: Last evaluated ratio per monitor
"""
from __future__ import annotations

from typing import Optional

from signal_sentinel.storage.models import RatioMonitor, RatioStateRecord
from signal_sentinel.storage.repositories.base import BaseRepository


class RatioMonitorRepository(BaseRepository[RatioMonitor]):
    """Repository for ratio monitors."""

    table_name = "ratio_monitors"
    model_class = RatioMonitor

    async def create(self, monitor: RatioMonitor) -> RatioMonitor:
        query = """
            INSERT INTO ratio_monitors
            (id, name, tag, first_rule_id, second_rule_id, steps,
             threshold_percent, time_window, enabled, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            monitor.id,
            monitor.name,
            monitor.tag,
            monitor.first_rule_id,
            monitor.second_rule_id,
            [step.model_dump() for step in monitor.steps],
            monitor.threshold_percent,
            monitor.time_window.value,
            monitor.enabled,
            monitor.created_at,
            monitor.updated_at,
        )
        return self._to_model(record)

    async def update(self, monitor: RatioMonitor) -> Optional[RatioMonitor]:
        query = """
            UPDATE ratio_monitors
            SET name = $2,
                tag = $3,
                first_rule_id = $4,
                second_rule_id = $5,
                steps = $6,
                threshold_percent = $7,
                time_window = $8,
                enabled = $9,
                updated_at = $10
            WHERE id = $1
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            monitor.id,
            monitor.name,
            monitor.tag,
            monitor.first_rule_id,
            monitor.second_rule_id,
            [step.model_dump() for step in monitor.steps],
            monitor.threshold_percent,
            monitor.time_window.value,
            monitor.enabled,
            monitor.updated_at,
        )
        return self._to_model(record)

    async def get_enabled(self) -> list[RatioMonitor]:
        query = "SELECT * FROM ratio_monitors WHERE enabled = TRUE ORDER BY created_at"
        records = await self.db.fetch(query)
        return self._to_models(records)

    async def get_all(
        self, tag: Optional[str] = None, enabled: Optional[bool] = None
    ) -> list[RatioMonitor]:
        conditions: list[str] = []
        args: list = []

        if tag is not None:
            args.append(tag)
            conditions.append(f"tag = ${len(args)}")
        if enabled is not None:
            args.append(enabled)
            conditions.append(f"enabled = ${len(args)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"SELECT * FROM ratio_monitors {where} ORDER BY created_at DESC"
        records = await self.db.fetch(query, *args)
        return self._to_models(records)

    async def get_all_tags(self) -> list[str]:
        """Distinct monitor tags, alphabetically."""
        records = await self.db.fetch(
            "SELECT DISTINCT tag FROM ratio_monitors ORDER BY tag"
        )
        return [r["tag"] for r in records]


class RatioStateRepository(BaseRepository[RatioStateRecord]):
    """Repository for evaluated ratio state."""

    table_name = "ratio_states"
    model_class = RatioStateRecord
    id_column = "monitor_id"

    async def get(self, monitor_id: str) -> Optional[RatioStateRecord]:
        return await self.get_by_id(monitor_id)

    async def upsert(self, state: RatioStateRecord) -> RatioStateRecord:
        query = """
            INSERT INTO ratio_states
            (monitor_id, state, first_count, second_count, current_ratio,
             steps_data, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (monitor_id) DO UPDATE SET
                state = EXCLUDED.state,
                first_count = EXCLUDED.first_count,
                second_count = EXCLUDED.second_count,
                current_ratio = EXCLUDED.current_ratio,
                steps_data = EXCLUDED.steps_data,
                updated_at = EXCLUDED.updated_at
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            state.monitor_id,
            state.state.value,
            state.first_count,
            state.second_count,
            state.current_ratio,
            [step.model_dump() for step in state.steps_data],
            state.updated_at,
        )
        return self._to_model(record)
