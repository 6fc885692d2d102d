"""Client (billed party) domain models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr, model_validator

from core.models.currency import Currency


class ClientCreate(BaseModel):
    """Data required to create a client."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    address: str | None = Field(None, max_length=1000)
    tax_id: str | None = Field(None, max_length=100)
    tax_country: str | None = Field(None, max_length=2)
    tax_state: str | None = Field(None, max_length=100)
    tax_rate: Decimal | None = Field(None, ge=0, le=1, decimal_places=4)
    tax_exempt: bool = False
    tax_exemption_reason: str | None = Field(None, max_length=500)
    currency: Currency | None = None

    @model_validator(mode="after")
    def require_exemption_reason(self) -> "ClientCreate":
        """An exempt client must say why."""
        if self.tax_exempt and not self.tax_exemption_reason:
            raise ValueError("tax_exemption_reason is required when tax_exempt is set")
        return self


class ClientUpdate(BaseModel):
    """Data that can be updated on a client. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    address: str | None = Field(None, max_length=1000)
    tax_id: str | None = Field(None, max_length=100)
    tax_country: str | None = Field(None, max_length=2)
    tax_state: str | None = Field(None, max_length=100)
    tax_rate: Decimal | None = Field(None, ge=0, le=1, decimal_places=4)
    tax_exempt: bool | None = None
    tax_exemption_reason: str | None = Field(None, max_length=500)
    currency: Currency | None = None


class Client(BaseModel):
    """Full client entity as stored."""

    id: UUID
    user_id: UUID
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    address: str | None = None
    tax_id: str | None = None
    tax_country: str | None = None
    tax_state: str | None = None
    tax_rate: Decimal | None = None
    tax_exempt: bool = False
    tax_exemption_reason: str | None = None
    currency: Currency | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def effective_tax_rate(self) -> Decimal | None:
        """Rate to freeze onto new invoices. None means the client has no rate configured."""
        if self.tax_exempt:
            return Decimal("0")
        return self.tax_rate

    @property
    def tax_label(self) -> str:
        """Human-readable tax summary, e.g. 'US CA (8.25%)'."""
        if self.tax_exempt:
            return "Tax Exempt"
        rate = f"{(self.tax_rate or Decimal('0')) * 100:.2f}".rstrip("0").rstrip(".") + "%"
        location = " ".join(p for p in [(self.tax_country or "").upper(), self.tax_state or ""] if p)
        return f"{location} ({rate})" if location else rate
