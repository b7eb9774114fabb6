"""
Monitoring errors.

Validation failures carry every offending field at once so an API layer
can render them together.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    REQUIRED = "REQUIRED"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_REGEX = "INVALID_REGEX"
    INVALID_THRESHOLD = "INVALID_THRESHOLD"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class FieldError:
    field: str
    code: ErrorCode
    message: str


class MonitoringError(Exception):
    """Base class for monitoring errors."""


class ValidationError(MonitoringError):
    """A create/update request failed validation."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Validation failed: {summary}")

    @property
    def fields(self) -> set[str]:
        return {e.field for e in self.errors}


class RuleValidationError(ValidationError):
    pass


class RatioMonitorValidationError(ValidationError):
    pass


class NotFoundError(MonitoringError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")
