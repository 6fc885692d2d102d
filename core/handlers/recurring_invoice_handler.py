"""
Handler for RecurringInvoiceGenerated events.

A generated invoice is already SENT, so the client gets it by email with
the template title and when the next one will follow.
"""

import logging
from typing import Callable

from clients.email_client import EmailGatewayError
from core.events import RecurringInvoiceGenerated
from core.models import NotificationType
from core.services.currency_service import CurrencyService

logger = logging.getLogger(__name__)


def handle_recurring_generated(email_client, client_service, preference_service) -> Callable:
    """
    Factory that returns a RecurringInvoiceGenerated handler.

    Args:
        email_client: EmailGatewayClient instance
        client_service: ClientService instance
        preference_service: PreferenceService instance

    Returns:
        Handler callable that emails the generated invoice
    """

    def handler(event: RecurringInvoiceGenerated):
        invoice = event.invoice
        template = event.recurring_invoice

        if not preference_service.is_enabled(invoice.user_id, NotificationType.RECURRING_INVOICE_GENERATED):
            return

        client = client_service.get_by_id(invoice.client_id)
        if client is None or not client.email:
            logger.warning(f"No client email for recurring invoice {invoice.invoice_number}, not sending")
            return

        amount = CurrencyService.format_amount(invoice.total, invoice.currency)
        try:
            email_client.send_email(
                to=client.email,
                subject=f"{template.title}: invoice {invoice.invoice_number}",
                body=(
                    f"Hello {client.name},\n\n"
                    f"Your {template.frequency.label.lower()} invoice {invoice.invoice_number} "
                    f"for {amount} is due by {invoice.due_date.strftime('%b %d, %Y')}.\n"
                    f"The next invoice will be issued on {template.next_run_date.strftime('%b %d, %Y')}.\n"
                ),
                tag="recurring_invoice_generated",
            )
        except EmailGatewayError as e:
            logger.error(f"Recurring invoice email for {invoice.invoice_number} failed: {e}")

    return handler
