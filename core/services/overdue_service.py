"""
Overdue detection sweep.

Moves SENT invoices whose due date has passed to OVERDUE. The candidate
query is only a hint: each invoice is locked and re-checked before the
update, so concurrent sweeps (cron and page loads) mark an invoice once.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.activity import ActivityLogger
from core.config import BillingConfig
from core.lifecycle import assert_transition
from core.models import ActivityAction, Invoice, InvoiceStatus, SweepResult
from core.money import ZERO, to_money
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

# Aging buckets as (label, min days overdue, max days overdue)
AGING_BUCKETS = (
    ("1-30", 1, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
)


class OverdueInvoiceService:
    """Service for marking and reporting overdue invoices."""

    def __init__(self, postgres: PostgresClient, activity: ActivityLogger, config: BillingConfig | None = None):
        self.postgres = postgres
        self.activity = activity
        self.config = config or BillingConfig()

    def process_overdue_invoices(self, user_id: UUID | None = None, limit: int | None = None) -> SweepResult:
        """
        Mark every SENT invoice due before today as OVERDUE.

        Args:
            user_id: Restrict to one owner (page-load sweep)
            limit: Stop after this many candidates

        Returns:
            SweepResult with one item per candidate invoice
        """
        today = today_utc()
        result = SweepResult()

        query = """
            SELECT id FROM invoices
            WHERE status = 'sent' AND due_date < %s AND deleted_at IS NULL
        """
        params: tuple = (today,)
        if user_id is not None:
            query += " AND user_id = %s"
            params += (user_id,)

        seen = 0
        for chunk in self.postgres.iter_chunks(query, params, chunk_size=self.config.sweep_chunk_size):
            for row in chunk:
                if limit is not None and seen >= limit:
                    return result
                seen += 1
                self._mark_one(row["id"], today, result)

        if result.total:
            logger.info(
                f"Overdue sweep: {result.processed} marked, "
                f"{result.skipped} skipped, {result.errors} errors"
            )
        return result

    def _mark_one(self, invoice_id: UUID, today: date, result: SweepResult) -> None:
        try:
            with self.postgres.transaction() as cur:
                cur.execute(
                    "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                    (invoice_id,)
                )
                row = cur.fetchone()
                if row is None:
                    result.record_skipped(invoice_id, "Invoice no longer exists")
                    return
                invoice = Invoice.model_validate(row)

                if invoice.status != InvoiceStatus.SENT:
                    result.record_skipped(invoice_id, f"Status already changed to {invoice.status.value}")
                    return
                if invoice.due_date >= today:
                    result.record_skipped(invoice_id, "Due date is not in the past")
                    return

                assert_transition(invoice_id, invoice.status, InvoiceStatus.OVERDUE)
                cur.execute(
                    """
                    UPDATE invoices
                    SET status = %s, updated_at = %s
                    WHERE id = %s
                    RETURNING *
                    """,
                    (InvoiceStatus.OVERDUE.value, now_utc(), invoice_id)
                )
                updated = Invoice.model_validate(cur.fetchone())

                days_overdue = invoice.days_overdue(today)
                self.activity.log(
                    invoice_id,
                    ActivityAction.MARKED_OVERDUE,
                    {
                        "automated": True,
                        "overdue_since": invoice.due_date,
                        "days_overdue": days_overdue,
                        "processed_at": now_utc(),
                    },
                    cursor=cur,
                )
        except Exception as e:
            logger.exception(f"Marking invoice {invoice_id} overdue failed")
            result.record_error(invoice_id, str(e))
            return

        result.record_processed(
            invoice_id,
            invoice_number=updated.invoice_number,
            days_overdue=days_overdue,
        )

    def get_overdue_summary(self) -> dict[str, Any]:
        """
        Overdue invoices grouped for a dashboard.

        Returns:
            Dict with count, totals per currency, aging bucket counts and
            the invoices that became overdue within the last week
        """
        today = today_utc()
        invoices = [
            Invoice.model_validate(row)
            for row in self.postgres.execute(
                """
                SELECT * FROM invoices
                WHERE status = 'overdue' AND deleted_at IS NULL
                ORDER BY due_date ASC
                """
            )
        ]

        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        aging = {label: 0 for label, _, _ in AGING_BUCKETS}
        recently_overdue = []

        for invoice in invoices:
            totals[invoice.currency.value] = to_money(totals[invoice.currency.value] + invoice.total)
            days = invoice.days_overdue(today)
            for label, low, high in AGING_BUCKETS:
                if days >= low and (high is None or days <= high):
                    aging[label] += 1
                    break
            if days <= 7:
                recently_overdue.append({
                    "id": invoice.id,
                    "invoice_number": invoice.invoice_number,
                    "total": invoice.total,
                    "currency": invoice.currency.value,
                    "days_overdue": days,
                })

        return {
            "count": len(invoices),
            "total_by_currency": dict(totals),
            "aging": aging,
            "recently_overdue": recently_overdue,
        }

    def get_upcoming_overdue(self, days: int = 7) -> list[Invoice]:
        """SENT invoices falling due within the next `days` days."""
        today = today_utc()
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE status = 'sent' AND due_date >= %s AND due_date <= %s AND deleted_at IS NULL
            ORDER BY due_date ASC
            """,
            (today, today + timedelta(days=days))
        )
        return [Invoice.model_validate(row) for row in rows]
