"""Currency codes and stored exchange rates."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "CAD": "C$",
    "AUD": "A$",
    "JPY": "¥",
    "CHF": "CHF",
    "CNY": "¥",
    "INR": "₹",
    "MXN": "$",
    "BRL": "R$",
}

_NAMES = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "CAD": "Canadian Dollar",
    "AUD": "Australian Dollar",
    "JPY": "Japanese Yen",
    "CHF": "Swiss Franc",
    "CNY": "Chinese Yuan",
    "INR": "Indian Rupee",
    "MXN": "Mexican Peso",
    "BRL": "Brazilian Real",
}


class Currency(str, Enum):
    """
    Supported ISO 4217 currency codes.

    Raw strings are parsed once at the boundary with Currency.parse();
    everything past that point works with the enum.
    """

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    CHF = "CHF"
    CNY = "CNY"
    INR = "INR"
    MXN = "MXN"
    BRL = "BRL"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self.value]

    @property
    def display_name(self) -> str:
        return _NAMES[self.value]

    @property
    def label(self) -> str:
        """Code with symbol, e.g. 'EUR (€)'. Codes whose symbol is the code itself stay bare."""
        if self.symbol == self.value:
            return self.value
        return f"{self.value} ({self.symbol})"

    @classmethod
    def parse(cls, value: "str | Currency") -> "Currency":
        """
        Parse a currency code, case-insensitively.

        Raises:
            ValueError: If the code is not supported
        """
        if isinstance(value, Currency):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported currency: {value!r}")


class CurrencyExchangeRate(BaseModel):
    """One stored rate: 1 unit of base_currency = rate units of target_currency on date."""

    id: UUID
    base_currency: Currency
    target_currency: Currency
    rate: Decimal = Field(..., gt=0, decimal_places=6)
    date: date
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
