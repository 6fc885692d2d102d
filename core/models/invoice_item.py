"""Invoice line item models.

Items belong to exactly one invoice and are replaced wholesale whenever
the invoice is edited.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from core.money import to_money


class InvoiceItemCreate(BaseModel):
    """One line on a new or edited invoice."""

    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., ge=Decimal("0.01"), le=Decimal("999999.99"), decimal_places=2)
    unit_price: Decimal = Field(..., ge=0, le=Decimal("999999.99"), decimal_places=2)

    @property
    def total(self) -> Decimal:
        return to_money(self.quantity * self.unit_price)


class InvoiceItem(BaseModel):
    """Full line item as stored."""

    id: UUID
    invoice_id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
