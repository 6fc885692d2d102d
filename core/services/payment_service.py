"""
Payment application.

A payment is accepted only on a sent or overdue invoice and only up to the
remaining balance (total minus payments already recorded). The insert, the
activity entries and the possible move to PAID commit together; a failure
anywhere leaves neither a payment row nor a status change behind.
"""

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient, TransactionCursor
from core.activity import ActivityLogger
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import PaymentExceedsBalanceError
from core.lifecycle import assert_transition
from core.models import ActivityAction, Invoice, InvoiceStatus, Payment, PaymentCreate
from core.money import to_money
from utils.user_context import get_current_user_id
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for recording and reading payments."""

    def __init__(self, postgres: PostgresClient, activity: ActivityLogger, event_bus: EventBus):
        self.postgres = postgres
        self.activity = activity
        self.event_bus = event_bus

    @staticmethod
    def _check_payable(invoice: Invoice, amount: Decimal, paid: Decimal) -> None:
        if not invoice.status.can_be_paid:
            raise ValueError(
                f"Invoice {invoice.id} is {invoice.status.value} and cannot accept payments"
            )
        remaining = to_money(invoice.total - paid)
        if amount > remaining:
            raise PaymentExceedsBalanceError(invoice.id, amount, remaining)

    @staticmethod
    def _sum_locked(cur: TransactionCursor, invoice_id: UUID) -> Decimal:
        cur.execute(
            "SELECT COALESCE(SUM(amount), 0) AS paid FROM payments WHERE invoice_id = %s",
            (invoice_id,)
        )
        row = cur.fetchone()
        return to_money(row["paid"] if row else 0)

    def record_payment(self, invoice_id: UUID, data: PaymentCreate) -> Payment:
        """
        Record a payment and settle the invoice when it is fully paid.

        Args:
            invoice_id: Invoice being paid
            data: Amount, method, date and notes

        Returns:
            The stored payment

        Raises:
            ValueError: If invoice not found, not payable, or the date is in the future
            PaymentExceedsBalanceError: If amount is more than the remaining balance
        """
        user_id = get_current_user_id()
        amount = to_money(data.amount)

        if data.payment_date > today_utc():
            raise ValueError("Payment date cannot be in the future")

        # Reject obvious failures before opening a transaction
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL",
            (invoice_id,)
        )
        if row is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        self._check_payable(Invoice.model_validate(row), amount, self.get_total_paid(invoice_id))

        with self.postgres.transaction() as cur:
            cur.execute(
                "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                (invoice_id,)
            )
            locked = cur.fetchone()
            if locked is None:
                raise ValueError(f"Invoice {invoice_id} not found")
            invoice = Invoice.model_validate(locked)

            paid = self._sum_locked(cur, invoice_id)
            self._check_payable(invoice, amount, paid)

            cur.execute(
                """
                INSERT INTO payments (id, invoice_id, user_id, amount, method, payment_date, notes, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), invoice_id, user_id, amount, data.method.value,
                    data.payment_date, data.notes, now_utc()
                )
            )
            payment = Payment.model_validate(cur.fetchone())

            new_paid = to_money(paid + amount)
            self.activity.log(
                invoice_id,
                ActivityAction.PAYMENT_RECEIVED,
                {
                    "payment_id": payment.id,
                    "amount": amount,
                    "method": payment.method.value,
                    "payment_date": payment.payment_date,
                    "remaining_balance": to_money(invoice.total - new_paid),
                },
                cursor=cur,
            )

            fully_paid = new_paid >= invoice.total
            if fully_paid:
                assert_transition(invoice_id, invoice.status, InvoiceStatus.PAID)
                now = now_utc()
                cur.execute(
                    """
                    UPDATE invoices
                    SET status = %s, paid_at = %s, updated_at = %s
                    WHERE id = %s
                    RETURNING *
                    """,
                    (InvoiceStatus.PAID.value, now, now, invoice_id)
                )
                invoice = Invoice.model_validate(cur.fetchone())
                self.activity.log(
                    invoice_id,
                    ActivityAction.PAID,
                    {"paid_at": now, "amount": invoice.total, "payment_id": payment.id},
                    cursor=cur,
                )

        logger.info(
            f"Payment {payment.id} of {amount} recorded on invoice {invoice.invoice_number}"
            + (" (fully paid)" if fully_paid else "")
        )

        self.event_bus.publish(PaymentRecorded.create(payment=payment, invoice=invoice))
        if fully_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=invoice))

        return payment

    def get_total_paid(self, invoice_id: UUID) -> Decimal:
        """Sum of all payments on an invoice."""
        value = self.postgres.execute_scalar(
            "SELECT COALESCE(SUM(amount), 0) FROM payments WHERE invoice_id = %s",
            (invoice_id,)
        )
        return to_money(value or 0)

    def get_remaining_balance(self, invoice_id: UUID) -> Decimal:
        """
        Total minus payments recorded so far.

        Raises:
            ValueError: If invoice not found
        """
        total = self.postgres.execute_scalar(
            "SELECT total FROM invoices WHERE id = %s AND deleted_at IS NULL",
            (invoice_id,)
        )
        if total is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return to_money(total - self.get_total_paid(invoice_id))

    def list_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        """Payments on an invoice, oldest first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM payments
            WHERE invoice_id = %s
            ORDER BY payment_date ASC, created_at ASC
            """,
            (invoice_id,)
        )
        return [Payment.model_validate(row) for row in rows]
