"""Structured outcomes of batch operations.

Sweeps never raise as a whole. Every candidate they touch ends up as one
SweepItem, and the counters summarize the list.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class SweepOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERROR = "error"


class SweepItem(BaseModel):
    """What happened to one entity during a sweep."""

    entity_id: UUID
    outcome: SweepOutcome
    reason: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


class SweepResult(BaseModel):
    """Counts plus per-item details for one sweep run."""

    processed: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[SweepItem] = Field(default_factory=list)

    def record_processed(self, entity_id: UUID, **detail: Any) -> None:
        self.processed += 1
        self.details.append(SweepItem(entity_id=entity_id, outcome=SweepOutcome.PROCESSED, detail=detail))

    def record_skipped(self, entity_id: UUID, reason: str) -> None:
        self.skipped += 1
        self.details.append(SweepItem(entity_id=entity_id, outcome=SweepOutcome.SKIPPED, reason=reason))

    def record_error(self, entity_id: UUID, reason: str) -> None:
        self.errors += 1
        self.details.append(SweepItem(entity_id=entity_id, outcome=SweepOutcome.ERROR, reason=reason))

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.errors


class PageLoadResult(BaseModel):
    """Result of the bounded per-user sweep run during a page load."""

    overdue: SweepResult = Field(default_factory=SweepResult)
    reminders: SweepResult = Field(default_factory=SweepResult)
    recurring: SweepResult = Field(default_factory=SweepResult)
