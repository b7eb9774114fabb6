"""
Retention cleanup for operational tables.

Each table is swept independently: a failure on one is logged and
reported, the others still run. The outcome of every sweep is written as a
single system_logs entry.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from signal_sentinel.storage.repositories import (
    AlertRepository,
    BaseRepository,
    CleanupSettingsRepository,
    HeartbeatLogRepository,
    HitLogRepository,
    RatioAlertRepository,
    SystemLogRepository,
    utcnow,
)

logger = logging.getLogger(__name__)

SYSTEM_LOG_CATEGORY = "cleanup"


class CleanupTarget(str, Enum):
    HIT_LOGS = "hit_logs"
    ALERTS = "alerts"
    RATIO_ALERTS = "ratio_alerts"
    HEARTBEAT_LOGS = "heartbeat_logs"
    SYSTEM_LOGS = "system_logs"


class CleanupConfig(BaseModel):
    """Retention windows. Out-of-range values are rejected."""

    model_config = ConfigDict(frozen=True)

    hit_logs_retention_hours: int = Field(default=72, ge=24, le=168)
    alerts_retention_days: int = Field(default=90, ge=7, le=365)
    ratio_alerts_retention_days: int = Field(default=90, ge=7, le=365)
    heartbeat_logs_retention_days: int = Field(default=30, ge=1, le=90)
    system_logs_retention_days: int = Field(default=30, ge=1, le=365)

    def retention_for(self, target: CleanupTarget) -> timedelta:
        if target is CleanupTarget.HIT_LOGS:
            return timedelta(hours=self.hit_logs_retention_hours)
        if target is CleanupTarget.ALERTS:
            return timedelta(days=self.alerts_retention_days)
        if target is CleanupTarget.RATIO_ALERTS:
            return timedelta(days=self.ratio_alerts_retention_days)
        if target is CleanupTarget.HEARTBEAT_LOGS:
            return timedelta(days=self.heartbeat_logs_retention_days)
        return timedelta(days=self.system_logs_retention_days)


@dataclass
class TableCleanupResult:
    deleted: int = 0
    cutoff: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class CleanupResult:
    executed_at: datetime
    tables: dict[CleanupTarget, TableCleanupResult] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def total_deleted(self) -> int:
        return sum(t.deleted for t in self.tables.values())

    @property
    def errors(self) -> dict[CleanupTarget, str]:
        return {k: t.error for k, t in self.tables.items() if t.error is not None}


class CleanupService:
    """
    Sweeps rows older than their retention window.

    Usage:
        service = CleanupService(
            hit_log_repo, alert_repo, ratio_alert_repo,
            heartbeat_log_repo, system_log_repo, settings_repo,
        )
        result = await service.run()
    """

    def __init__(
        self,
        hit_log_repo: HitLogRepository,
        alert_repo: AlertRepository,
        ratio_alert_repo: RatioAlertRepository,
        heartbeat_log_repo: HeartbeatLogRepository,
        system_log_repo: SystemLogRepository,
        settings_repo: Optional[CleanupSettingsRepository] = None,
        config: Optional[CleanupConfig] = None,
    ) -> None:
        self._targets: dict[CleanupTarget, BaseRepository] = {
            CleanupTarget.HIT_LOGS: hit_log_repo,
            CleanupTarget.ALERTS: alert_repo,
            CleanupTarget.RATIO_ALERTS: ratio_alert_repo,
            CleanupTarget.HEARTBEAT_LOGS: heartbeat_log_repo,
            CleanupTarget.SYSTEM_LOGS: system_log_repo,
        }
        self._system_log_repo = system_log_repo
        self._settings_repo = settings_repo
        self._config = config or CleanupConfig()

    async def get_config(self) -> CleanupConfig:
        """
        Effective retention config: stored overrides on top of the defaults.

        Overrides that fail validation are ignored with a warning.
        """
        if self._settings_repo is None:
            return self._config

        try:
            stored = await self._settings_repo.get_all()
        except Exception as e:
            logger.warning(f"Could not load cleanup settings, using defaults: {e}")
            return self._config

        overrides = {k: v for k, v in stored.items() if k in CleanupConfig.model_fields}
        if not overrides:
            return self._config

        try:
            return CleanupConfig(**{**self._config.model_dump(), **overrides})
        except ValidationError as e:
            logger.warning(f"Ignoring invalid cleanup settings {overrides}: {e}")
            return self._config

    async def update_config(self, values: dict[str, Any]) -> CleanupConfig:
        """
        Validate and persist retention overrides.

        Raises:
            ValueError: an unknown key, or pydantic.ValidationError for an out-of-range value
        """
        if self._settings_repo is None:
            raise RuntimeError("Cleanup settings storage is not configured")

        current = await self.get_config()
        unknown = set(values) - set(CleanupConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown cleanup settings: {sorted(unknown)}")

        config = CleanupConfig(**{**current.model_dump(), **values})
        await self._settings_repo.set_many({k: getattr(config, k) for k in values})
        logger.info(f"Cleanup settings updated: {values}")
        return config

    async def cleanup_table(
        self, target: CleanupTarget, config: CleanupConfig, now: datetime
    ) -> TableCleanupResult:
        cutoff = now - config.retention_for(target)
        try:
            deleted = await self._targets[target].delete_older_than(cutoff)
        except Exception as e:
            logger.error(f"Cleanup of {target.value} failed: {e}")
            return TableCleanupResult(cutoff=cutoff, error=str(e))

        if deleted:
            logger.info(f"Cleanup: deleted {deleted} rows from {target.value}")
        return TableCleanupResult(deleted=deleted, cutoff=cutoff)

    async def run(self, now: Optional[datetime] = None) -> CleanupResult:
        """Sweep every table once and record the outcome."""
        now = now or utcnow()
        started = time.monotonic()
        config = await self.get_config()
        result = CleanupResult(executed_at=now)

        for target in CleanupTarget:
            result.tables[target] = await self.cleanup_table(target, config, now)

        result.duration_ms = int((time.monotonic() - started) * 1000)

        details = {
            "deleted": {t.value: r.deleted for t, r in result.tables.items()},
            "errors": {t.value: e for t, e in result.errors.items()},
            "total_deleted": result.total_deleted,
            "duration_ms": result.duration_ms,
            "retention": config.model_dump(),
        }
        try:
            await self._system_log_repo.create(
                SYSTEM_LOG_CATEGORY,
                f"Cleanup finished: {result.total_deleted} rows deleted",
                details,
            )
        except Exception as e:
            logger.error(f"Failed to record cleanup summary: {e}")

        level = logging.WARNING if result.errors else logging.INFO
        logger.log(
            level,
            f"Cleanup: {result.total_deleted} rows deleted, "
            f"{len(result.errors)} tables failed ({result.duration_ms}ms)",
        )
        return result
