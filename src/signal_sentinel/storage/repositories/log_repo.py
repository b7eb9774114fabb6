"""
Audit log repositories.

Handles:
- heartbeat_logs: One summary row per heartbeat pass
- system_logs: Housekeeping audit entries
- cleanup_settings: Runtime overrides of retention windows
"""
from __future__ import annotations

from typing import Any, Optional

from signal_sentinel.storage.models import HeartbeatLog, SystemLog
from signal_sentinel.storage.repositories.base import BaseRepository, utcnow


class HeartbeatLogRepository(BaseRepository[HeartbeatLog]):
    """Append-only heartbeat pass summaries."""

    table_name = "heartbeat_logs"
    model_class = HeartbeatLog
    age_column = "checked_at"

    async def create(self, log: HeartbeatLog) -> HeartbeatLog:
        query = """
            INSERT INTO heartbeat_logs
            (checked_at, rules_checked, state_changes, alerts_triggered, duration_ms)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            log.checked_at,
            log.rules_checked,
            log.state_changes,
            log.alerts_triggered,
            log.duration_ms,
        )
        return self._to_model(record)

    async def get_recent(self, limit: int = 20) -> list[HeartbeatLog]:
        query = "SELECT * FROM heartbeat_logs ORDER BY checked_at DESC LIMIT $1"
        records = await self.db.fetch(query, limit)
        return self._to_models(records)


class SystemLogRepository(BaseRepository[SystemLog]):
    """Housekeeping audit entries."""

    table_name = "system_logs"
    model_class = SystemLog
    age_column = "created_at"

    async def create(
        self, category: str, message: str, details: Optional[dict[str, Any]] = None
    ) -> SystemLog:
        query = """
            INSERT INTO system_logs (category, message, details, created_at)
            VALUES ($1, $2, $3, $4)
            RETURNING *
        """
        record = await self.db.fetchrow(
            query, category, message, details or {}, utcnow()
        )
        return self._to_model(record)

    async def get_recent(
        self, category: Optional[str] = None, limit: int = 50
    ) -> list[SystemLog]:
        if category is None:
            query = "SELECT * FROM system_logs ORDER BY created_at DESC LIMIT $1"
            records = await self.db.fetch(query, limit)
        else:
            query = """
                SELECT * FROM system_logs
                WHERE category = $1
                ORDER BY created_at DESC
                LIMIT $2
            """
            records = await self.db.fetch(query, category, limit)
        return self._to_models(records)


class CleanupSettingsRepository:
    """Key/value retention overrides. Values are validated by the caller."""

    def __init__(self, db) -> None:
        self.db = db

    async def get_all(self) -> dict[str, str]:
        records = await self.db.fetch("SELECT key, value FROM cleanup_settings")
        return {r["key"]: r["value"] for r in records}

    async def set_many(self, values: dict[str, Any]) -> None:
        now = utcnow()
        async with self.db.transaction() as conn:
            for key, value in values.items():
                await conn.execute(
                    """
                    INSERT INTO cleanup_settings (key, value, updated_at)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = EXCLUDED.updated_at
                    """,
                    key,
                    str(value),
                    now,
                )
