"""Invoice domain models.

Amounts are Decimal with two places. The tax rate and exemption flag are
copied from the client when the invoice is created and never follow later
changes to the client.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.currency import Currency
from core.models.invoice_item import InvoiceItemCreate


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_editable(self) -> bool:
        """Content (items, dates, notes) may change only while drafting."""
        return self is InvoiceStatus.DRAFT

    @property
    def can_be_sent(self) -> bool:
        return self is InvoiceStatus.DRAFT

    @property
    def can_be_paid(self) -> bool:
        """Payments are accepted only on issued, unsettled invoices."""
        return self in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE)

    @property
    def can_be_marked_as_paid(self) -> bool:
        return self in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE)

    @property
    def can_be_cancelled(self) -> bool:
        return self in (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE)

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)


class InvoiceCreate(BaseModel):
    """
    Data required to create an invoice.

    Dates default at creation time: issue_date to today and due_date to
    issue_date plus the configured payment terms.
    """

    client_id: UUID
    items: list[InvoiceItemCreate] = Field(..., min_length=1)
    issue_date: date | None = None
    due_date: date | None = None
    currency: Currency | None = None
    tax_rate: Decimal | None = Field(None, ge=0, le=1)
    notes: str | None = Field(None, max_length=2000)
    status: InvoiceStatus = InvoiceStatus.DRAFT

    @model_validator(mode="after")
    def check_dates_and_status(self) -> "InvoiceCreate":
        """Due date may not precede issue date; new invoices start as draft or sent."""
        if self.issue_date and self.due_date and self.due_date < self.issue_date:
            raise ValueError("due_date must be on or after issue_date")
        if self.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise ValueError("New invoices must be created as draft or sent")
        return self


class InvoiceUpdate(BaseModel):
    """
    Editable invoice content. All fields optional.

    When items is given the existing items are replaced, not merged.
    """

    client_id: UUID | None = None
    items: list[InvoiceItemCreate] | None = Field(None, min_length=1)
    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_required_not_cleared(self) -> "InvoiceUpdate":
        """client_id and the dates may be changed but never cleared."""
        for field in ("client_id", "issue_date", "due_date"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    user_id: UUID
    client_id: UUID
    recurring_invoice_id: UUID | None = None
    invoice_number: str
    status: InvoiceStatus
    subtotal: Decimal
    tax: Decimal
    discount: Decimal = Decimal("0.00")
    total: Decimal
    currency: Currency
    invoice_tax_rate: Decimal
    tax_exempt_at_time: bool = False
    issue_date: date
    due_date: date
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    stripe_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def days_overdue(self, today: date) -> int:
        """Whole days past the due date, zero if not yet due."""
        return max((today - self.due_date).days, 0)

    def days_until_due(self, today: date) -> int:
        """Whole days until the due date, zero if already due."""
        return max((self.due_date - today).days, 0)
