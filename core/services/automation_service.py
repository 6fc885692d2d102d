"""
On-page-load automation.

A small, per-owner version of the cron sweeps that runs while a page is
served, so an owner sees overdue flags and fresh recurring invoices even
when cron is late. Each step is capped by BillingConfig and any failure is
logged, never raised into the request.
"""

import logging
from uuid import UUID

from core.config import BillingConfig
from core.models import PageLoadResult
from core.services.overdue_service import OverdueInvoiceService
from core.services.recurring_invoice_service import RecurringInvoiceService
from core.services.reminder_service import ReminderService
from utils.user_context import user_context

logger = logging.getLogger(__name__)


class AutomationService:
    """Runs the bounded page-load sweep for one owner."""

    def __init__(
        self,
        overdue: OverdueInvoiceService,
        reminders: ReminderService,
        recurring: RecurringInvoiceService,
        config: BillingConfig | None = None,
    ):
        self.overdue = overdue
        self.reminders = reminders
        self.recurring = recurring
        self.config = config or BillingConfig()

    def run_on_page_load(self, user_id: UUID) -> PageLoadResult:
        """
        Mark overdue invoices, record due-soon reminders and generate due
        recurring invoices for one owner.

        Args:
            user_id: The owner whose page is loading

        Returns:
            PageLoadResult; a step that failed as a whole is left empty
        """
        result = PageLoadResult()

        with user_context(user_id):
            try:
                result.overdue = self.overdue.process_overdue_invoices(
                    user_id=user_id, limit=self.config.page_load_overdue_limit
                )
            except Exception:
                logger.exception(f"Page-load overdue sweep failed for user {user_id}")

            try:
                result.reminders = self.reminders.process_due_soon_reminders(
                    user_id=user_id, limit=self.config.page_load_reminder_limit
                )
            except Exception:
                logger.exception(f"Page-load reminder sweep failed for user {user_id}")

            try:
                result.recurring = self.recurring.generate_due_invoices(
                    user_id=user_id, limit=self.config.page_load_recurring_limit
                )
            except Exception:
                logger.exception(f"Page-load recurring generation failed for user {user_id}")

        return result
