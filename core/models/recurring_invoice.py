"""Recurring invoice template models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class RecurringFrequency(str, Enum):
    """How often a template produces an invoice."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]

    @property
    def label(self) -> str:
        return self.value.capitalize()


class RecurringStatus(str, Enum):
    """
    Template status.

    ACTIVE and PAUSED toggle freely. CANCELLED is terminal.
    """

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"

    @property
    def can_pause(self) -> bool:
        return self is RecurringStatus.ACTIVE

    @property
    def can_resume(self) -> bool:
        return self is RecurringStatus.PAUSED

    @property
    def can_cancel(self) -> bool:
        return self in (RecurringStatus.ACTIVE, RecurringStatus.PAUSED)


class RecurringInvoiceCreate(BaseModel):
    """Data required to create a recurring template. next_run_date defaults to start_date."""

    client_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=Decimal("0.01"), le=Decimal("999999.99"), decimal_places=2)
    frequency: RecurringFrequency
    start_date: date
    next_run_date: date | None = None
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_next_run(self) -> "RecurringInvoiceCreate":
        """First run cannot precede the start date."""
        if self.next_run_date is not None and self.next_run_date < self.start_date:
            raise ValueError("next_run_date must be on or after start_date")
        return self


class RecurringInvoiceUpdate(BaseModel):
    """Editable template fields. All optional."""

    title: str | None = Field(None, min_length=1, max_length=255)
    amount: Decimal | None = Field(None, ge=Decimal("0.01"), le=Decimal("999999.99"), decimal_places=2)
    frequency: RecurringFrequency | None = None
    next_run_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class RecurringInvoice(BaseModel):
    """Full recurring template as stored."""

    id: UUID
    user_id: UUID
    client_id: UUID
    title: str
    amount: Decimal
    frequency: RecurringFrequency
    status: RecurringStatus
    start_date: date
    next_run_date: date
    last_run_date: date | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}
