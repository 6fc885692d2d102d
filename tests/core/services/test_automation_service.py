"""Tests for the page-load automation sweep."""

from unittest.mock import Mock
from uuid import uuid4

import pytest

from core.config import BillingConfig
from core.models import PageLoadResult, SweepResult
from core.services.automation_service import AutomationService
from utils.user_context import peek_current_user_id


@pytest.fixture
def steps():
    overdue, reminders, recurring = Mock(), Mock(), Mock()
    overdue.process_overdue_invoices.return_value = SweepResult(processed=1)
    reminders.process_due_soon_reminders.return_value = SweepResult(processed=2)
    recurring.generate_due_invoices.return_value = SweepResult(processed=3)
    return overdue, reminders, recurring


@pytest.fixture
def automation(steps):
    return AutomationService(*steps)


class TestRunOnPageLoad:

    def test_runs_each_step_scoped_and_capped(self, automation, steps, test_user_id):
        overdue, reminders, recurring = steps

        result = automation.run_on_page_load(test_user_id)

        assert isinstance(result, PageLoadResult)
        assert (result.overdue.processed, result.reminders.processed, result.recurring.processed) == (1, 2, 3)
        overdue.process_overdue_invoices.assert_called_once_with(user_id=test_user_id, limit=10)
        reminders.process_due_soon_reminders.assert_called_once_with(user_id=test_user_id, limit=5)
        recurring.generate_due_invoices.assert_called_once_with(user_id=test_user_id, limit=3)

    def test_limits_come_from_config(self, steps, test_user_id):
        overdue, reminders, recurring = steps
        config = BillingConfig(page_load_overdue_limit=1, page_load_reminder_limit=0, page_load_recurring_limit=7)

        AutomationService(overdue, reminders, recurring, config).run_on_page_load(test_user_id)

        assert overdue.process_overdue_invoices.call_args.kwargs["limit"] == 1
        assert reminders.process_due_soon_reminders.call_args.kwargs["limit"] == 0
        assert recurring.generate_due_invoices.call_args.kwargs["limit"] == 7

    def test_runs_as_the_owner_and_restores_context(self, automation, steps, test_user_id):
        seen = []
        steps[0].process_overdue_invoices.side_effect = lambda **kwargs: seen.append(peek_current_user_id()) or SweepResult()

        automation.run_on_page_load(test_user_id)

        assert seen == [test_user_id]
        assert peek_current_user_id() is None

    def test_failing_step_does_not_stop_the_others(self, automation, steps, caplog):
        overdue, reminders, recurring = steps
        overdue.process_overdue_invoices.side_effect = RuntimeError("database is down")
        user_id = uuid4()

        result = automation.run_on_page_load(user_id)

        assert result.overdue.total == 0
        assert result.reminders.processed == 2
        assert result.recurring.processed == 3
        assert f"Page-load overdue sweep failed for user {user_id}" in caplog.text
