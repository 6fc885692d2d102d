"""
Invoice totals calculator.

Pure functions. Stored invoice totals are a cache of calculate_totals()
over the invoice's current items and frozen tax rate.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from core.money import to_decimal, to_money, ZERO


@dataclass(frozen=True)
class InvoiceTotals:
    """Monetary summary of an invoice, every field rounded to cents."""

    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "discount": self.discount,
            "total": self.total,
        }


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """quantity x unit_price, rounded to cents."""
    return to_money(to_decimal(quantity) * to_decimal(unit_price))


def calculate_totals(
    items: Iterable[Any],
    tax_rate: Any,
    discount: Any = ZERO,
) -> InvoiceTotals:
    """
    Derive subtotal, tax and total from line items.

    Args:
        items: Objects or dicts with quantity and unit_price
        tax_rate: Fraction, e.g. Decimal("0.10") for 10%
        discount: Flat amount subtracted after tax

    Returns:
        InvoiceTotals where total == subtotal + tax - discount

    Raises:
        ValueError: If tax_rate or discount is negative
    """
    rate = to_decimal(tax_rate)
    if rate < 0:
        raise ValueError(f"Tax rate cannot be negative: {rate}")
    discount = to_money(discount)
    if discount < 0:
        raise ValueError(f"Discount cannot be negative: {discount}")

    subtotal = to_money(sum(
        (line_total(_field(item, "quantity"), _field(item, "unit_price")) for item in items),
        ZERO,
    ))
    tax = to_money(subtotal * rate)

    return InvoiceTotals(
        subtotal=subtotal,
        tax=tax,
        discount=discount,
        total=to_money(subtotal + tax - discount),
    )


def totals_diverge(stored_total: Any, computed: InvoiceTotals, tolerance: Any = Decimal("0.01")) -> bool:
    """True when a stored total is off from the recomputed one by more than tolerance."""
    return abs(to_decimal(stored_total) - computed.total) > to_decimal(tolerance)
