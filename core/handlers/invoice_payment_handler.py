"""
Handlers for PaymentRecorded and InvoicePaid events.

Every payment gets a receipt with the remaining balance; an invoice that
reaches PAID gets a thank-you.
"""

import logging
from typing import Callable

from clients.email_client import EmailGatewayError
from core.events import InvoicePaid, PaymentRecorded
from core.models import NotificationType
from core.services.currency_service import CurrencyService

logger = logging.getLogger(__name__)


def handle_payment_recorded(email_client, client_service, preference_service, payment_service) -> Callable:
    """
    Factory that returns a PaymentRecorded handler.

    Args:
        email_client: EmailGatewayClient instance
        client_service: ClientService instance
        preference_service: PreferenceService instance
        payment_service: PaymentService instance, for the remaining balance

    Returns:
        Handler callable that emails a payment receipt
    """

    def handler(event: PaymentRecorded):
        payment = event.payment
        invoice = event.invoice

        if not preference_service.is_enabled(invoice.user_id, NotificationType.PAYMENT_RECEIPT):
            return

        client = client_service.get_by_id(invoice.client_id)
        if client is None or not client.email:
            logger.warning(f"No client email for invoice {invoice.invoice_number}, no receipt sent")
            return

        amount = CurrencyService.format_amount(payment.amount, invoice.currency)
        remaining = CurrencyService.format_amount(
            payment_service.get_remaining_balance(invoice.id), invoice.currency
        )
        try:
            email_client.send_email(
                to=client.email,
                subject=f"Payment receipt for invoice {invoice.invoice_number}",
                body=(
                    f"We received {amount} by {payment.method.label} "
                    f"on {payment.payment_date.strftime('%b %d, %Y')}.\n"
                    f"Remaining balance: {remaining}\n"
                ),
                tag="payment_receipt",
            )
        except EmailGatewayError as e:
            logger.error(f"Payment receipt for {invoice.invoice_number} failed: {e}")

    return handler


def handle_invoice_paid(email_client, client_service, preference_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        email_client: EmailGatewayClient instance
        client_service: ClientService instance
        preference_service: PreferenceService instance

    Returns:
        Handler callable that thanks the client for settling the invoice
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice

        if not preference_service.is_enabled(invoice.user_id, NotificationType.INVOICE_PAID):
            return

        client = client_service.get_by_id(invoice.client_id)
        if client is None or not client.email:
            logger.warning(f"No client email for invoice {invoice.invoice_number}, no thank-you sent")
            return

        try:
            email_client.send_email(
                to=client.email,
                subject="Payment received",
                body=f"Thank you! Invoice {invoice.invoice_number} is paid in full.",
                tag="invoice_paid",
            )
        except EmailGatewayError as e:
            logger.error(f"Paid notice for {invoice.invoice_number} failed: {e}")

    return handler
