"""Shared enums and types for the expertise engine."""

from enum import StrEnum


class RecordType(StrEnum):
    CONVENTION = "convention"
    PATTERN = "pattern"
    FAILURE = "failure"
    DECISION = "decision"
    REFERENCE = "reference"
    GUIDE = "guide"


class Classification(StrEnum):
    FOUNDATIONAL = "foundational"
    TACTICAL = "tactical"
    OBSERVATIONAL = "observational"


class OutcomeStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class WriteAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class GovernanceLevel(StrEnum):
    OK = "ok"
    OVER_MAX = "over_max"
    WARN = "warn"
    HARD_LIMIT = "hard_limit"
