"""
Ratio / funnel monitoring.

A ratio monitor compares two rules' rolling counters over a window:

    current_ratio = 0 if first == 0 else second / first * 100
    state         = HEALTHY if current_ratio >= threshold else LOW

HEALTHY -> LOW raises RATIO_LOW and LOW -> HEALTHY raises RATIO_RECOVERED.
Extra funnel steps are recorded for display only and never change the
monitor's state.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from signal_sentinel.monitoring.errors import (
    ErrorCode,
    FieldError,
    NotFoundError,
    RatioMonitorValidationError,
)
from signal_sentinel.monitoring.notifier import NotificationDispatcher
from signal_sentinel.storage.models import (
    FunnelStep,
    FunnelStepStatus,
    RatioAlert,
    RatioAlertType,
    RatioMonitor,
    RatioState,
    RatioStateRecord,
    RatioStatus,
    SignalStateRecord,
    StepCount,
    TimeWindow,
)
from signal_sentinel.storage.repositories import (
    MonitoringRuleRepository,
    RatioAlertRepository,
    RatioMonitorRepository,
    RatioStateRepository,
    SignalStateRepository,
    utcnow,
)

logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    RatioAlertType.RATIO_LOW: "Ratio alert",
    RatioAlertType.RATIO_RECOVERED: "Ratio recovered",
}


def calculate_ratio(first_count: int, second_count: int) -> float:
    """Percentage of ``first_count`` that reached ``second_count``; 0 when first is 0."""
    if first_count == 0:
        return 0.0
    return second_count / first_count * 100


def calculate_ratio_state(ratio: float, threshold_percent: float) -> RatioState:
    return RatioState.HEALTHY if ratio >= threshold_percent else RatioState.LOW


def determine_ratio_alert_type(
    previous: RatioState, current: RatioState
) -> Optional[RatioAlertType]:
    if previous == current:
        return None
    if current == RatioState.LOW:
        return RatioAlertType.RATIO_LOW
    return RatioAlertType.RATIO_RECOVERED


def format_ratio_message(
    monitor: RatioMonitor,
    alert_type: RatioAlertType,
    first_count: int,
    second_count: int,
    current_ratio: float,
) -> str:
    threshold = f"{monitor.threshold_percent:g}"
    if alert_type == RatioAlertType.RATIO_LOW:
        return (
            f"[Ratio alert] {monitor.name}: ratio {current_ratio:.1f}% "
            f"below threshold {threshold}% ({second_count}/{first_count})"
        )
    return (
        f"[Ratio recovered] {monitor.name}: ratio {current_ratio:.1f}% "
        f"back above threshold {threshold}% ({second_count}/{first_count})"
    )


class RatioMonitorCreate(BaseModel):
    name: str = ""
    tag: str = ""
    first_rule_id: str = ""
    second_rule_id: str = ""
    steps: list[FunnelStep] = Field(default_factory=list)
    threshold_percent: Optional[float] = None
    time_window: str = TimeWindow.TWENTY_FOUR_HOURS.value
    enabled: bool = True


class RatioMonitorUpdate(BaseModel):
    name: Optional[str] = None
    tag: Optional[str] = None
    first_rule_id: Optional[str] = None
    second_rule_id: Optional[str] = None
    steps: Optional[list[FunnelStep]] = None
    threshold_percent: Optional[float] = None
    time_window: Optional[str] = None
    enabled: Optional[bool] = None


@dataclass
class RatioCheckResult:
    monitors_checked: int = 0
    alerts_triggered: int = 0
    failed_monitors: int = 0


class RatioMonitorService:
    """
    Manages ratio monitors and evaluates them.

    Usage:
        service = RatioMonitorService(
            monitor_repo, ratio_state_repo, ratio_alert_repo,
            rule_repo, signal_state_repo, dispatcher,
        )
        result = await service.check_all()
    """

    def __init__(
        self,
        monitor_repo: RatioMonitorRepository,
        ratio_state_repo: RatioStateRepository,
        ratio_alert_repo: RatioAlertRepository,
        rule_repo: MonitoringRuleRepository,
        signal_state_repo: SignalStateRepository,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._monitor_repo = monitor_repo
        self._ratio_state_repo = ratio_state_repo
        self._ratio_alert_repo = ratio_alert_repo
        self._rule_repo = rule_repo
        self._signal_state_repo = signal_state_repo
        self._dispatcher = dispatcher

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def _validate(
        self,
        name: Optional[str],
        tag: Optional[str],
        first_rule_id: Optional[str],
        second_rule_id: Optional[str],
        steps: list[FunnelStep],
        threshold_percent: Optional[float],
        time_window: Optional[str],
    ) -> list[FieldError]:
        errors: list[FieldError] = []

        if not name or not name.strip():
            errors.append(FieldError("name", ErrorCode.REQUIRED, "Name is required"))
        if not tag or not tag.strip():
            errors.append(FieldError("tag", ErrorCode.REQUIRED, "Tag is required"))

        for field_name, rule_id in (
            ("first_rule_id", first_rule_id),
            ("second_rule_id", second_rule_id),
        ):
            if not rule_id:
                errors.append(FieldError(field_name, ErrorCode.REQUIRED, "Rule is required"))
            elif not await self._rule_repo.exists(rule_id):
                errors.append(
                    FieldError(field_name, ErrorCode.NOT_FOUND, f"Rule not found: {rule_id}")
                )

        for step in steps:
            if not await self._rule_repo.exists(step.rule_id):
                errors.append(
                    FieldError(
                        "steps", ErrorCode.NOT_FOUND, f"Step rule not found: {step.rule_id}"
                    )
                )

        if threshold_percent is None:
            errors.append(
                FieldError("threshold_percent", ErrorCode.REQUIRED, "Threshold is required")
            )
        elif not 0 <= threshold_percent <= 100:
            errors.append(
                FieldError(
                    "threshold_percent",
                    ErrorCode.INVALID_THRESHOLD,
                    "Threshold must be between 0 and 100",
                )
            )

        valid_windows = {w.value for w in TimeWindow}
        if time_window not in valid_windows:
            errors.append(
                FieldError(
                    "time_window",
                    ErrorCode.INVALID_VALUE,
                    f"Time window must be one of {sorted(valid_windows)}",
                )
            )

        return errors

    async def create(
        self, data: RatioMonitorCreate, now: Optional[datetime] = None
    ) -> RatioMonitor:
        """
        Validate and store a monitor.

        An enabled monitor gets its initial state computed immediately, with
        no alert, so the first scheduled check only alerts on a real change.
        """
        errors = await self._validate(
            data.name,
            data.tag,
            data.first_rule_id,
            data.second_rule_id,
            data.steps,
            data.threshold_percent,
            data.time_window,
        )
        if errors:
            raise RatioMonitorValidationError(errors)

        now = now or utcnow()
        monitor = RatioMonitor(
            id=str(uuid.uuid4()),
            name=data.name.strip(),
            tag=data.tag.strip(),
            first_rule_id=data.first_rule_id,
            second_rule_id=data.second_rule_id,
            steps=sorted(data.steps, key=lambda s: s.order),
            threshold_percent=data.threshold_percent,
            time_window=TimeWindow(data.time_window),
            enabled=data.enabled,
            created_at=now,
            updated_at=now,
        )
        created = await self._monitor_repo.create(monitor)

        if created.enabled:
            record, _ = await self._evaluate(created, now)
            await self._ratio_state_repo.upsert(record)

        logger.info(f"Created ratio monitor {created.id}: {created.name} [{created.tag}]")
        return created

    async def update(self, monitor_id: str, data: RatioMonitorUpdate) -> RatioMonitor:
        existing = await self._monitor_repo.get_by_id(monitor_id)
        if existing is None:
            raise NotFoundError("Ratio monitor", monitor_id)

        changes = data.model_dump(exclude_none=True)
        time_window = changes.pop("time_window", existing.time_window.value)
        steps = data.steps if data.steps is not None else existing.steps
        changes.pop("steps", None)

        errors = await self._validate(
            changes.get("name", existing.name),
            changes.get("tag", existing.tag),
            changes.get("first_rule_id", existing.first_rule_id),
            changes.get("second_rule_id", existing.second_rule_id),
            steps,
            changes.get("threshold_percent", existing.threshold_percent),
            time_window,
        )
        if errors:
            raise RatioMonitorValidationError(errors)

        merged = existing.model_copy(
            update={
                **changes,
                "steps": sorted(steps, key=lambda s: s.order),
                "time_window": TimeWindow(time_window),
                "updated_at": utcnow(),
            }
        )
        updated = await self._monitor_repo.update(merged)
        if updated is None:
            raise NotFoundError("Ratio monitor", monitor_id)
        return updated

    async def delete(self, monitor_id: str) -> bool:
        return await self._monitor_repo.delete(monitor_id)

    async def get(self, monitor_id: str) -> Optional[RatioMonitor]:
        return await self._monitor_repo.get_by_id(monitor_id)

    async def list(
        self, tag: Optional[str] = None, enabled: Optional[bool] = None
    ) -> list[RatioMonitor]:
        return await self._monitor_repo.get_all(tag=tag, enabled=enabled)

    async def get_all_tags(self) -> list[str]:
        return await self._monitor_repo.get_all_tags()

    async def get_alerts(
        self, monitor_id: Optional[str] = None, limit: int = 100
    ) -> list[RatioAlert]:
        return await self._ratio_alert_repo.get_all(monitor_id=monitor_id, limit=limit)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def _count(self, rule_id: str, window: TimeWindow) -> int:
        record: Optional[SignalStateRecord] = await self._signal_state_repo.get(rule_id)
        if record is None:
            return 0
        return record.count_for(window)

    async def _evaluate(
        self, monitor: RatioMonitor, now: datetime
    ) -> tuple[RatioStateRecord, float]:
        first_count = await self._count(monitor.first_rule_id, monitor.time_window)
        second_count = await self._count(monitor.second_rule_id, monitor.time_window)
        ratio = calculate_ratio(first_count, second_count)

        steps_data = [
            StepCount(
                rule_id=step.rule_id,
                count=await self._count(step.rule_id, monitor.time_window),
            )
            for step in monitor.steps
        ]

        record = RatioStateRecord(
            monitor_id=monitor.id,
            state=calculate_ratio_state(ratio, monitor.threshold_percent),
            first_count=first_count,
            second_count=second_count,
            current_ratio=ratio,
            steps_data=steps_data,
            updated_at=now,
        )
        return record, ratio

    async def check_monitor(
        self, monitor: RatioMonitor, now: Optional[datetime] = None
    ) -> Optional[RatioAlert]:
        """
        Evaluate one monitor, alert on a crossing and persist its state.

        The alert row is written before the new state. If storing the alert
        fails the previous state stays in place, so the next check sees the
        same crossing and retries it.
        """
        now = now or utcnow()
        record, ratio = await self._evaluate(monitor, now)

        previous = await self._ratio_state_repo.get(monitor.id)
        previous_state = previous.state if previous is not None else RatioState.HEALTHY

        alert_type = determine_ratio_alert_type(previous_state, record.state)
        if alert_type is None:
            await self._ratio_state_repo.upsert(record)
            return None

        alert = await self._ratio_alert_repo.create(
            RatioAlert(
                id=str(uuid.uuid4()),
                monitor_id=monitor.id,
                alert_type=alert_type,
                previous_state=previous_state,
                current_state=record.state,
                first_count=record.first_count,
                second_count=record.second_count,
                current_ratio=ratio,
                message=format_ratio_message(
                    monitor, alert_type, record.first_count, record.second_count, ratio
                ),
                created_at=now,
            )
        )
        await self._ratio_state_repo.upsert(record)
        logger.info(f"{alert_type.value}: {monitor.name} at {ratio:.1f}%")

        self._dispatcher.submit(
            NOTIFICATION_TITLES[alert_type],
            alert.message,
            alert_type=alert_type.value,
            on_sent=lambda: self._ratio_alert_repo.mark_sent(alert.id),
        )
        return alert

    async def check_all(self, now: Optional[datetime] = None) -> RatioCheckResult:
        """Evaluate every enabled monitor; one failing monitor does not stop the rest."""
        now = now or utcnow()
        result = RatioCheckResult()

        for monitor in await self._monitor_repo.get_enabled():
            result.monitors_checked += 1
            try:
                if await self.check_monitor(monitor, now) is not None:
                    result.alerts_triggered += 1
            except Exception as e:
                result.failed_monitors += 1
                logger.error(f"Ratio check failed for monitor {monitor.id}: {e}")

        logger.info(
            f"Ratio check: {result.monitors_checked} monitors, "
            f"{result.alerts_triggered} alerts, {result.failed_monitors} failed"
        )
        return result

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def _rule_name(self, rule_id: str) -> str:
        rule = await self._rule_repo.get_by_id(rule_id)
        return rule.name if rule is not None else "Unknown"

    async def get_status(self, monitor: RatioMonitor) -> RatioStatus:
        """
        Build the funnel view from the last evaluated state.

        Step 1 is the first rule (100%), step 2 the second rule measured
        against the monitor threshold, then each extra step measured against
        its own threshold relative to the previous step.
        """
        state = await self._ratio_state_repo.get(monitor.id)
        first_count = state.first_count if state else 0
        second_count = state.second_count if state else 0
        first_name = await self._rule_name(monitor.first_rule_id)
        second_name = await self._rule_name(monitor.second_rule_id)

        second_ratio = calculate_ratio(first_count, second_count)
        funnel = [
            FunnelStepStatus(
                order=1,
                rule_id=monitor.first_rule_id,
                rule_name=first_name,
                count=first_count,
                ratio_to_first=100.0,
                ratio_to_previous=100.0,
                state=RatioState.HEALTHY,
            ),
            FunnelStepStatus(
                order=2,
                rule_id=monitor.second_rule_id,
                rule_name=second_name,
                count=second_count,
                ratio_to_first=second_ratio,
                ratio_to_previous=second_ratio,
                state=calculate_ratio_state(second_ratio, monitor.threshold_percent),
            ),
        ]

        step_counts = {s.rule_id: s.count for s in (state.steps_data if state else [])}
        previous_count = second_count
        for step in monitor.steps:
            count = step_counts.get(step.rule_id, 0)
            to_previous = calculate_ratio(previous_count, count)
            funnel.append(
                FunnelStepStatus(
                    order=step.order,
                    rule_id=step.rule_id,
                    rule_name=await self._rule_name(step.rule_id),
                    count=count,
                    ratio_to_first=calculate_ratio(first_count, count),
                    ratio_to_previous=to_previous,
                    state=calculate_ratio_state(to_previous, step.threshold_percent),
                )
            )
            previous_count = count

        return RatioStatus(
            monitor=monitor,
            state=state.state if state else RatioState.HEALTHY,
            first_rule_name=first_name,
            second_rule_name=second_name,
            first_count=first_count,
            second_count=second_count,
            current_ratio=state.current_ratio if state else 0.0,
            funnel_steps=funnel,
            updated_at=state.updated_at if state else None,
        )

    async def get_all_statuses(
        self, tag: Optional[str] = None, enabled: Optional[bool] = None
    ) -> list[RatioStatus]:
        monitors = await self._monitor_repo.get_all(tag=tag, enabled=enabled)
        return [await self.get_status(m) for m in monitors]
