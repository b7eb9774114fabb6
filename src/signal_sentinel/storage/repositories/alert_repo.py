"""
Alert repositories.

Handles:
- alerts: Signal transition alerts
- ratio_alerts: Ratio threshold crossing alerts

Rows are append-only; sent_at is the only column ever updated.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from signal_sentinel.storage.models import Alert, AlertType, RatioAlert
from signal_sentinel.storage.repositories.base import BaseRepository, utcnow


class AlertRepository(BaseRepository[Alert]):
    """Repository for signal alerts."""

    table_name = "alerts"
    model_class = Alert
    age_column = "created_at"

    async def create(self, alert: Alert) -> Optional[Alert]:
        """
        Insert an alert.

        Returns None when an alert for the same rule, type and silence
        period already exists (e.g. written by another scheduler process).
        """
        query = """
            INSERT INTO alerts
            (id, rule_id, alert_type, previous_state, current_state, gap_minutes,
             count_1h, count_12h, count_24h, message, epoch_key, sent_at, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, NULL, $12)
            ON CONFLICT (rule_id, alert_type, epoch_key) DO NOTHING
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            alert.id,
            alert.rule_id,
            alert.alert_type.value,
            alert.previous_state.value,
            alert.current_state.value,
            alert.gap_minutes,
            alert.count_1h,
            alert.count_12h,
            alert.count_24h,
            alert.message,
            alert.epoch_key,
            alert.created_at,
        )
        return self._to_model(record)

    async def get_all(
        self,
        rule_id: Optional[str] = None,
        alert_type: Optional[AlertType] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Alert]:
        """Get alerts, newest first."""
        conditions: list[str] = []
        args: list = []

        if rule_id is not None:
            args.append(rule_id)
            conditions.append(f"rule_id = ${len(args)}")
        if alert_type is not None:
            args.append(alert_type.value)
            conditions.append(f"alert_type = ${len(args)}")
        if since is not None:
            args.append(since)
            conditions.append(f"created_at >= ${len(args)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        args.append(limit)
        query = f"SELECT * FROM alerts {where} ORDER BY created_at DESC LIMIT ${len(args)}"
        records = await self.db.fetch(query, *args)
        return self._to_models(records)

    async def get_unsent(self, limit: int = 100) -> list[Alert]:
        query = """
            SELECT * FROM alerts
            WHERE sent_at IS NULL
            ORDER BY created_at
            LIMIT $1
        """
        records = await self.db.fetch(query, limit)
        return self._to_models(records)

    async def mark_sent(self, alert_id: str, sent_at: Optional[datetime] = None) -> bool:
        """Set sent_at once. Returns False if already sent or missing."""
        query = "UPDATE alerts SET sent_at = $2 WHERE id = $1 AND sent_at IS NULL"
        result = await self.db.execute(query, alert_id, sent_at or utcnow())
        return result != "UPDATE 0"


class RatioAlertRepository(BaseRepository[RatioAlert]):
    """Repository for ratio alerts."""

    table_name = "ratio_alerts"
    model_class = RatioAlert
    age_column = "created_at"

    async def create(self, alert: RatioAlert) -> RatioAlert:
        query = """
            INSERT INTO ratio_alerts
            (id, monitor_id, alert_type, previous_state, current_state,
             first_count, second_count, current_ratio, message, sent_at, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, NULL, $10)
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            alert.id,
            alert.monitor_id,
            alert.alert_type.value,
            alert.previous_state.value,
            alert.current_state.value,
            alert.first_count,
            alert.second_count,
            alert.current_ratio,
            alert.message,
            alert.created_at,
        )
        return self._to_model(record)

    async def get_all(
        self, monitor_id: Optional[str] = None, limit: int = 100
    ) -> list[RatioAlert]:
        if monitor_id is None:
            query = "SELECT * FROM ratio_alerts ORDER BY created_at DESC LIMIT $1"
            records = await self.db.fetch(query, limit)
        else:
            query = """
                SELECT * FROM ratio_alerts
                WHERE monitor_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """
            records = await self.db.fetch(query, monitor_id, limit)
        return self._to_models(records)

    async def mark_sent(self, alert_id: str, sent_at: Optional[datetime] = None) -> bool:
        query = "UPDATE ratio_alerts SET sent_at = $2 WHERE id = $1 AND sent_at IS NULL"
        result = await self.db.execute(query, alert_id, sent_at or utcnow())
        return result != "UPDATE 0"
