"""Payment domain models. Payments are immutable once recorded."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How the client paid."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CARD = "card"

    @property
    def label(self) -> str:
        return {
            "cash": "Cash",
            "bank_transfer": "Bank Transfer",
            "upi": "UPI",
            "card": "Card",
        }[self.value]


class PaymentCreate(BaseModel):
    """
    Data required to record a payment.

    The not-in-the-future check on payment_date happens in PaymentService,
    where "today" is resolved in UTC.
    """

    amount: Decimal = Field(..., gt=0, le=Decimal("99999999.99"), decimal_places=2)
    method: PaymentMethod
    payment_date: date
    notes: str | None = Field(None, max_length=1000)


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    invoice_id: UUID
    user_id: UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
