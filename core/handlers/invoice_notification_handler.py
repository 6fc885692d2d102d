"""
Handler for InvoiceCreated and InvoiceSent events.

When an invoice reaches the client (created directly as sent, or a draft
being sent) the client gets an email with the amount and due date.
"""

import logging
from typing import Callable

from clients.email_client import EmailGatewayError
from core.events import InvoiceCreated, InvoiceSent
from core.models import NotificationType
from core.services.currency_service import CurrencyService

logger = logging.getLogger(__name__)


def handle_invoice_issued(email_client, client_service, preference_service) -> Callable:
    """
    Factory that returns an InvoiceCreated / InvoiceSent handler.

    Dependencies are captured at wiring time via closure.

    Args:
        email_client: EmailGatewayClient instance
        client_service: ClientService instance
        preference_service: PreferenceService instance

    Returns:
        Handler callable that emails the invoice to the client
    """

    def handler(event: InvoiceCreated | InvoiceSent):
        invoice = event.invoice

        if not preference_service.is_enabled(invoice.user_id, NotificationType.INVOICE_CREATED):
            logger.info(f"Invoice email for {invoice.invoice_number} disabled by owner preferences")
            return

        client = client_service.get_by_id(invoice.client_id)
        if client is None or not client.email:
            logger.warning(f"No client email for invoice {invoice.invoice_number}, not sending")
            return

        amount = CurrencyService.format_amount(invoice.total, invoice.currency)
        try:
            email_client.send_email(
                to=client.email,
                subject=f"Invoice {invoice.invoice_number} for {amount}",
                body=(
                    f"Hello {client.name},\n\n"
                    f"Invoice {invoice.invoice_number} for {amount} has been issued.\n"
                    f"Payment is due by {invoice.due_date.strftime('%b %d, %Y')}.\n"
                ),
                tag="invoice_created",
            )
        except EmailGatewayError as e:
            logger.error(f"Invoice email for {invoice.invoice_number} failed: {e}")

    return handler
