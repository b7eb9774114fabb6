"""
Signal state repository.

Handles:
- signal_states: Current liveness and rolling counters per rule
- hit_logs: Raw hit audit rows (high volume, short retention)

Every write here is a single statement or a row-locked transaction so
concurrent hits and heartbeat passes never lose updates.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from signal_sentinel.storage.models import (
    HitLog,
    HitMetadata,
    MonitoringRule,
    SignalState,
    SignalStateRecord,
)
from signal_sentinel.storage.repositories.base import BaseRepository, utcnow

_STATUS_QUERY = """
    SELECT
        r.*,
        s.state AS s_state,
        s.last_seen_at AS s_last_seen_at,
        s.count_1h AS s_count_1h,
        s.count_12h AS s_count_12h,
        s.count_24h AS s_count_24h,
        s.transition_seq AS s_transition_seq,
        s.updated_at AS s_updated_at
    FROM signal_states s
    JOIN monitoring_rules r ON r.id = s.rule_id
"""


def _split_status_record(record) -> tuple[MonitoringRule, SignalStateRecord]:
    """Split a joined rule/state row into its two models."""
    row = dict(record)
    state = SignalStateRecord(
        rule_id=row["id"],
        state=row.pop("s_state"),
        last_seen_at=row.pop("s_last_seen_at"),
        count_1h=row.pop("s_count_1h"),
        count_12h=row.pop("s_count_12h"),
        count_24h=row.pop("s_count_24h"),
        transition_seq=row.pop("s_transition_seq"),
        updated_at=row.pop("s_updated_at"),
    )
    return MonitoringRule(**row), state


class SignalStateRepository(BaseRepository[SignalStateRecord]):
    """Repository for per-rule signal state."""

    table_name = "signal_states"
    model_class = SignalStateRecord
    id_column = "rule_id"

    async def get(self, rule_id: str) -> Optional[SignalStateRecord]:
        return await self.get_by_id(rule_id)

    async def get_with_rule(
        self, rule_id: str
    ) -> Optional[tuple[MonitoringRule, SignalStateRecord]]:
        record = await self.db.fetchrow(f"{_STATUS_QUERY} WHERE s.rule_id = $1", rule_id)
        if record is None:
            return None
        return _split_status_record(record)

    async def get_all_with_rules(
        self, enabled_only: bool = False
    ) -> list[tuple[MonitoringRule, SignalStateRecord]]:
        where = "WHERE r.enabled = TRUE" if enabled_only else ""
        records = await self.db.fetch(f"{_STATUS_QUERY} {where}")
        return [_split_status_record(r) for r in records]

    async def compare_and_set_state(
        self,
        rule_id: str,
        expected_state: SignalState,
        expected_last_seen_at: Optional[datetime],
        new_state: SignalState,
        now: Optional[datetime] = None,
    ) -> Optional[SignalStateRecord]:
        """
        Move a rule to ``new_state`` only if nothing changed since it was read.

        Returns the updated record, or None when a concurrent hit (or another
        pass) already modified the row.
        """
        query = """
            UPDATE signal_states
            SET state = $2, updated_at = $5, transition_seq = transition_seq + 1
            WHERE rule_id = $1
              AND state = $3
              AND last_seen_at IS NOT DISTINCT FROM $4
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            rule_id,
            new_state.value,
            expected_state.value,
            expected_last_seen_at,
            now or utcnow(),
        )
        return self._to_model(record)

    async def record_hit(
        self,
        rule_id: str,
        hit_time: datetime,
        hit: Optional[HitMetadata] = None,
    ) -> Optional[tuple[SignalStateRecord, SignalStateRecord]]:
        """
        Record an observed signal.

        Sets last_seen_at, forces ACTIVE and increments the three rolling
        counters in one statement under a row lock. Optionally writes a hit
        log row in the same transaction.

        Returns (state before, state after), or None if the rule is unknown.
        """
        async with self.db.transaction() as conn:
            before = await conn.fetchrow(
                "SELECT * FROM signal_states WHERE rule_id = $1 FOR UPDATE",
                rule_id,
            )
            if before is None:
                return None

            after = await conn.fetchrow(
                """
                UPDATE signal_states
                SET last_seen_at = $2,
                    state = $3,
                    count_1h = count_1h + 1,
                    count_12h = count_12h + 1,
                    count_24h = count_24h + 1,
                    transition_seq = transition_seq + 1,
                    updated_at = NOW()
                WHERE rule_id = $1
                RETURNING *
                """,
                rule_id,
                hit_time,
                SignalState.ACTIVE.value,
            )

            if hit is not None:
                await conn.execute(
                    """
                    INSERT INTO hit_logs (rule_id, sender, subject, recipient, received_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    rule_id,
                    hit.sender,
                    hit.subject,
                    hit.recipient,
                    hit.received_at,
                )

        return self._to_model(before), self._to_model(after)

    async def set_counters(
        self, rule_id: str, count_1h: int, count_12h: int, count_24h: int
    ) -> bool:
        query = """
            UPDATE signal_states
            SET count_1h = $2, count_12h = $3, count_24h = $4, updated_at = NOW()
            WHERE rule_id = $1
        """
        result = await self.db.execute(query, rule_id, count_1h, count_12h, count_24h)
        return result != "UPDATE 0"


class HitLogRepository(BaseRepository[HitLog]):
    """Repository for raw hit audit rows."""

    table_name = "hit_logs"
    model_class = HitLog
    age_column = "created_at"

    async def get_recent(self, rule_id: str, limit: int = 50) -> list[HitLog]:
        query = """
            SELECT * FROM hit_logs
            WHERE rule_id = $1
            ORDER BY received_at DESC
            LIMIT $2
        """
        records = await self.db.fetch(query, rule_id, limit)
        return self._to_models(records)

    async def count_windows(self, rule_id: str, now: datetime) -> tuple[int, int, int]:
        """Count hits in the trailing 1h, 12h and 24h windows ending at ``now``."""
        query = """
            SELECT
                COUNT(*) FILTER (WHERE received_at >= $3) AS c1,
                COUNT(*) FILTER (WHERE received_at >= $4) AS c12,
                COUNT(*) AS c24
            FROM hit_logs
            WHERE rule_id = $1
              AND received_at >= $5
              AND received_at <= $2
        """
        record = await self.db.fetchrow(
            query,
            rule_id,
            now,
            now - timedelta(hours=1),
            now - timedelta(hours=12),
            now - timedelta(hours=24),
        )
        if record is None:
            return 0, 0, 0
        return record["c1"], record["c12"], record["c24"]
