"""Tests for recurring schedule arithmetic."""

from datetime import date

import pytest

from core.models import RecurringFrequency, RecurringStatus
from core.schedule import add_months, calculate_next_run, should_generate


class TestAddMonths:

    def test_plain_month(self):
        assert add_months(date(2025, 3, 15), 1) == date(2025, 4, 15)

    def test_crosses_year(self):
        assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)

    def test_clamps_to_leap_day(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)


class TestCalculateNextRun:

    def test_monthly_from_jan_31_clamps_then_carries(self):
        """Jan 31 -> Feb 28, and the clamp carries forward to Mar 28."""
        first = calculate_next_run(RecurringFrequency.MONTHLY, date(2025, 1, 31))
        second = calculate_next_run(RecurringFrequency.MONTHLY, first)

        assert first == date(2025, 2, 28)
        assert second == date(2025, 3, 28)

    def test_quarterly(self):
        assert calculate_next_run("quarterly", date(2025, 5, 31)) == date(2025, 8, 31)

    def test_yearly_from_leap_day(self):
        assert calculate_next_run(RecurringFrequency.YEARLY, date(2024, 2, 29)) == date(2025, 2, 28)

    def test_unknown_frequency_rejected(self):
        with pytest.raises(ValueError):
            calculate_next_run("weekly", date(2025, 1, 1))


class TestShouldGenerate:

    def test_active_and_due(self):
        assert should_generate(RecurringStatus.ACTIVE, date(2025, 1, 1), date(2025, 1, 1))

    def test_active_and_overdue(self):
        assert should_generate("active", date(2024, 12, 1), date(2025, 1, 1))

    def test_not_yet_due(self):
        assert not should_generate("active", date(2025, 1, 2), date(2025, 1, 1))

    @pytest.mark.parametrize("status", ["paused", "cancelled"])
    def test_inactive_never_generates(self, status):
        assert not should_generate(status, date(2024, 1, 1), date(2025, 1, 1))
