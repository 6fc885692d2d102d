"""Tests for the totals calculator and money helpers."""

from decimal import Decimal

import pytest

from core.models import InvoiceItemCreate
from core.money import to_decimal, to_money, to_rate
from core.totals import calculate_totals, line_total, totals_diverge


# =============================================================================
# MONEY
# =============================================================================


class TestMoney:
    """Decimal coercion and rounding."""

    def test_to_money_rounds_half_up(self):
        assert to_money("2.345") == Decimal("2.35")
        assert to_money("2.344") == Decimal("2.34")

    def test_to_money_never_uses_binary_float(self):
        """0.1 + 0.2 as floats would give 0.30000000000000004."""
        assert to_money(0.1) + to_money(0.2) == Decimal("0.30")

    def test_to_rate_keeps_six_places(self):
        assert to_rate("0.9234567") == Decimal("0.923457")

    def test_to_decimal_rejects_none_and_bool(self):
        with pytest.raises(ValueError):
            to_decimal(None)
        with pytest.raises(ValueError):
            to_decimal(True)

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError, match="Not a numeric amount"):
            to_decimal("ten")


# =============================================================================
# TOTALS
# =============================================================================


class TestCalculateTotals:
    """subtotal = sum of lines, tax = subtotal x rate, total = subtotal + tax - discount."""

    def test_two_items_ten_percent(self):
        items = [
            {"quantity": Decimal("2"), "unit_price": Decimal("10.00")},
            {"quantity": Decimal("1"), "unit_price": Decimal("5.00")},
        ]
        totals = calculate_totals(items, Decimal("0.10"))

        assert totals.subtotal == Decimal("25.00")
        assert totals.tax == Decimal("2.50")
        assert totals.discount == Decimal("0.00")
        assert totals.total == Decimal("27.50")

    def test_accepts_item_models(self):
        items = [InvoiceItemCreate(description="Work", quantity=Decimal("1.50"), unit_price=Decimal("80.00"))]

        assert calculate_totals(items, Decimal("0")).total == Decimal("120.00")

    def test_no_items_is_all_zero(self):
        totals = calculate_totals([], Decimal("0.20"))

        assert totals.subtotal == totals.tax == totals.total == Decimal("0.00")

    def test_discount_subtracted_after_tax(self):
        items = [{"quantity": 1, "unit_price": "100.00"}]
        totals = calculate_totals(items, "0.10", discount="15")

        assert totals.total == Decimal("95.00")

    def test_total_invariant_holds_with_rounding(self):
        items = [
            {"quantity": "3", "unit_price": "0.33"},
            {"quantity": "0.5", "unit_price": "19.99"},
        ]
        totals = calculate_totals(items, "0.0725", discount="1.01")

        assert totals.total == totals.subtotal + totals.tax - totals.discount
        assert totals.tax == to_money(totals.subtotal * Decimal("0.0725"))

    def test_recalculating_is_idempotent(self):
        items = [{"quantity": "7", "unit_price": "13.13"}]

        assert calculate_totals(items, "0.19") == calculate_totals(items, "0.19")

    def test_negative_tax_rate_rejected(self):
        with pytest.raises(ValueError, match="Tax rate"):
            calculate_totals([], "-0.01")

    def test_negative_discount_rejected(self):
        with pytest.raises(ValueError, match="Discount"):
            calculate_totals([], "0", discount="-1")

    def test_as_dict(self):
        totals = calculate_totals([{"quantity": 1, "unit_price": 10}], 0)

        assert set(totals.as_dict()) == {"subtotal", "tax", "discount", "total"}


class TestLineTotal:

    def test_rounds_each_line(self):
        assert line_total("3", "0.335") == Decimal("1.01")


class TestTotalsDiverge:

    def test_within_tolerance(self):
        computed = calculate_totals([{"quantity": 1, "unit_price": "10.00"}], 0)

        assert totals_diverge("10.01", computed, "0.01") is False

    def test_beyond_tolerance(self):
        computed = calculate_totals([{"quantity": 1, "unit_price": "10.00"}], 0)

        assert totals_diverge("10.02", computed, "0.01") is True
