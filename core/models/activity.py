"""Invoice activity (timeline and automation dedup) models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ActivityAction(str, Enum):
    """What happened to an invoice."""

    CREATED = "created"
    SENT = "sent"
    PAID = "paid"
    PAYMENT_RECEIVED = "payment_received"
    PDF_GENERATED = "pdf_generated"
    CANCELLED = "cancelled"
    UPDATED = "updated"
    DELETED = "deleted"
    MARKED_OVERDUE = "marked_overdue"
    DUE_SOON_REMINDER = "due_soon_reminder"
    OVERDUE_REMINDER = "overdue_reminder"
    FOLLOW_UP_REMINDER = "follow_up_reminder"
    GENERATED_FROM_RECURRING = "generated_from_recurring"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def is_reminder(self) -> bool:
        return self in (
            ActivityAction.DUE_SOON_REMINDER,
            ActivityAction.OVERDUE_REMINDER,
            ActivityAction.FOLLOW_UP_REMINDER,
        )


_DESCRIPTIONS = {
    ActivityAction.CREATED: "Invoice created",
    ActivityAction.SENT: "Invoice sent to client",
    ActivityAction.PAID: "Invoice marked as paid",
    ActivityAction.PAYMENT_RECEIVED: "Payment received",
    ActivityAction.PDF_GENERATED: "PDF generated",
    ActivityAction.CANCELLED: "Invoice cancelled",
    ActivityAction.UPDATED: "Invoice updated",
    ActivityAction.DELETED: "Invoice deleted",
    ActivityAction.MARKED_OVERDUE: "Invoice automatically marked as overdue",
    ActivityAction.DUE_SOON_REMINDER: "Payment reminder sent (due soon)",
    ActivityAction.OVERDUE_REMINDER: "Overdue payment reminder sent",
    ActivityAction.FOLLOW_UP_REMINDER: "Follow-up reminder sent",
    ActivityAction.GENERATED_FROM_RECURRING: "Invoice generated from recurring template",
}


class InvoiceActivity(BaseModel):
    """One append-only timeline entry."""

    id: UUID
    invoice_id: UUID
    user_id: UUID | None = None
    action: ActivityAction
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def description(self) -> str:
        return self.action.description
