"""
Monitoring rule management.

Validates and persists rules. A rule's signal state row is created in the
same transaction as the rule and removed with it.
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field

from signal_sentinel.monitoring.errors import (
    ErrorCode,
    FieldError,
    NotFoundError,
    RuleValidationError,
)
from signal_sentinel.monitoring.state_calculator import ACTIVE_TOLERANCE
from signal_sentinel.storage.models import MonitoringRule
from signal_sentinel.storage.repositories import MonitoringRuleRepository, utcnow

logger = logging.getLogger(__name__)


class RuleCreate(BaseModel):
    """
    Input for creating a rule. Values are checked by ``validate_rule_fields``.

    Intervals are taken as given (``60``, ``"60"``) and reported as field
    errors when they are not whole numbers.
    """

    merchant: str = ""
    name: str = ""
    subject_pattern: str = ""
    expected_interval_minutes: Any = None
    dead_after_minutes: Any = None
    tags: list[str] = Field(default_factory=list)
    enabled: bool = True


class RuleUpdate(BaseModel):
    """Partial update; None means 'leave unchanged'."""

    merchant: Optional[str] = None
    name: Optional[str] = None
    subject_pattern: Optional[str] = None
    expected_interval_minutes: Any = None
    dead_after_minutes: Any = None
    tags: Optional[list[str]] = None
    enabled: Optional[bool] = None


def parse_minutes(value: Any) -> Optional[int]:
    """
    Whole minutes from request input: ``60``, ``60.0`` or ``"60"``.

    None and blank strings mean "not given".

    Raises:
        ValueError: the value is not a whole number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = float(value.strip())
        except ValueError:
            raise ValueError(f"not a number: {value!r}") from None
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not a whole number: {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    raise ValueError(f"not a number: {value!r}")


def _check_minutes(
    errors: list[FieldError], field: str, label: str, value: Any
) -> Optional[int]:
    """Append any problem with a minutes field; return the value when usable."""
    try:
        minutes = parse_minutes(value)
    except ValueError:
        errors.append(
            FieldError(field, ErrorCode.INVALID_VALUE, f"{label} must be a whole number of minutes")
        )
        return None
    if minutes is None:
        errors.append(FieldError(field, ErrorCode.REQUIRED, f"{label} is required"))
        return None
    if minutes <= 0:
        errors.append(FieldError(field, ErrorCode.INVALID_VALUE, f"{label} must be positive"))
        return None
    return minutes


def validate_rule_fields(
    merchant: Optional[str],
    name: Optional[str],
    subject_pattern: Optional[str],
    expected_interval_minutes: Any,
    dead_after_minutes: Any,
) -> list[FieldError]:
    """Return every problem with a complete set of rule fields."""
    errors: list[FieldError] = []

    if not merchant or not merchant.strip():
        errors.append(FieldError("merchant", ErrorCode.REQUIRED, "Merchant is required"))
    if not name or not name.strip():
        errors.append(FieldError("name", ErrorCode.REQUIRED, "Name is required"))

    if not subject_pattern or not subject_pattern.strip():
        errors.append(
            FieldError("subject_pattern", ErrorCode.REQUIRED, "Subject pattern is required")
        )
    else:
        try:
            re.compile(subject_pattern)
        except re.error as e:
            errors.append(
                FieldError(
                    "subject_pattern",
                    ErrorCode.INVALID_REGEX,
                    f"Invalid regex pattern: {e}",
                )
            )

    interval = _check_minutes(
        errors, "expected_interval_minutes", "Expected interval", expected_interval_minutes
    )
    dead_after = _check_minutes(
        errors, "dead_after_minutes", "Dead after threshold", dead_after_minutes
    )

    if interval is not None and dead_after is not None:
        min_dead_after = interval * ACTIVE_TOLERANCE
        if dead_after < min_dead_after:
            errors.append(
                FieldError(
                    "dead_after_minutes",
                    ErrorCode.INVALID_THRESHOLD,
                    f"Dead after threshold must be at least {min_dead_after:g} minutes "
                    f"({ACTIVE_TOLERANCE}x expected interval)",
                )
            )

    return errors


class RuleService:
    """
    CRUD for monitoring rules.

    Usage:
        service = RuleService(MonitoringRuleRepository(db))
        rule = await service.create(RuleCreate(
            merchant="acme", name="daily digest", subject_pattern="^Digest",
            expected_interval_minutes=60, dead_after_minutes=120,
        ))
    """

    def __init__(self, rule_repo: MonitoringRuleRepository) -> None:
        self._rule_repo = rule_repo

    async def create(self, data: RuleCreate) -> MonitoringRule:
        """Validate and store a rule with its initial DEAD signal state."""
        errors = validate_rule_fields(
            data.merchant,
            data.name,
            data.subject_pattern,
            data.expected_interval_minutes,
            data.dead_after_minutes,
        )
        if errors:
            raise RuleValidationError(errors)

        now = utcnow()
        rule = MonitoringRule(
            id=str(uuid.uuid4()),
            merchant=data.merchant.strip(),
            name=data.name.strip(),
            subject_pattern=data.subject_pattern,
            expected_interval_minutes=parse_minutes(data.expected_interval_minutes),
            dead_after_minutes=parse_minutes(data.dead_after_minutes),
            tags=data.tags,
            enabled=data.enabled,
            created_at=now,
            updated_at=now,
        )
        created = await self._rule_repo.create(rule)
        logger.info(f"Created rule {created.id}: {created.merchant} / {created.name}")
        return created

    async def update(self, rule_id: str, data: RuleUpdate) -> MonitoringRule:
        """
        Apply a partial update.

        The merged rule is validated as a whole, so changing only the
        interval still enforces the dead-after floor.

        Raises:
            NotFoundError: rule does not exist
            RuleValidationError: merged rule is invalid
        """
        existing = await self._rule_repo.get_by_id(rule_id)
        if existing is None:
            raise NotFoundError("Rule", rule_id)

        changes = data.model_dump(exclude_none=True)
        merged = existing.model_copy(update={**changes, "updated_at": utcnow()})

        errors = validate_rule_fields(
            merged.merchant,
            merged.name,
            merged.subject_pattern,
            merged.expected_interval_minutes,
            merged.dead_after_minutes,
        )
        if errors:
            raise RuleValidationError(errors)

        merged = merged.model_copy(
            update={
                "expected_interval_minutes": parse_minutes(merged.expected_interval_minutes),
                "dead_after_minutes": parse_minutes(merged.dead_after_minutes),
            }
        )
        updated = await self._rule_repo.update(merged)
        if updated is None:
            raise NotFoundError("Rule", rule_id)
        logger.info(f"Updated rule {rule_id}: {sorted(changes)}")
        return updated

    async def delete(self, rule_id: str) -> bool:
        """Delete a rule and, by cascade, its state, hit logs and alerts."""
        deleted = await self._rule_repo.delete(rule_id)
        if deleted:
            logger.info(f"Deleted rule {rule_id}")
        return deleted

    async def get(self, rule_id: str) -> Optional[MonitoringRule]:
        return await self._rule_repo.get_by_id(rule_id)

    async def list(
        self,
        merchant: Optional[str] = None,
        enabled: Optional[bool] = None,
        tag: Optional[str] = None,
    ) -> list[MonitoringRule]:
        return await self._rule_repo.get_all(merchant=merchant, enabled=enabled, tag=tag)

    async def get_enabled(self) -> list[MonitoringRule]:
        return await self._rule_repo.get_enabled()

    async def set_enabled(self, rule_id: str, enabled: bool) -> MonitoringRule:
        return await self.update(rule_id, RuleUpdate(enabled=enabled))
