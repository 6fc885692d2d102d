"""
Invoice service: creation, editing and the guarded lifecycle transitions.

Every state change runs in one transaction that locks the invoice row,
re-checks the transition against core.lifecycle, writes the new state and
appends the activity entry. Events are published only after commit.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient, TransactionCursor
from core.activity import ActivityLogger, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoiceSent, InvoicePaid
from core.exceptions import InvoiceNotEditableError
from core.lifecycle import assert_transition
from core.models import (
    ActivityAction,
    Client,
    Currency,
    Invoice,
    InvoiceCreate,
    InvoiceItem,
    InvoiceItemCreate,
    InvoiceStatus,
    InvoiceUpdate,
    SweepResult,
)
from core.totals import calculate_totals, totals_diverge
from utils.user_context import get_current_user_id
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

# Stored totals that drift from the items by more than the tolerance
_DRIFTED_INVOICES = """
    SELECT i.id FROM invoices i
    LEFT JOIN (
        SELECT invoice_id, SUM(total) AS items_subtotal
        FROM invoice_items
        GROUP BY invoice_id
    ) s ON s.invoice_id = i.id
    WHERE i.deleted_at IS NULL
      AND ABS(
        i.total - (
            ROUND(COALESCE(s.items_subtotal, 0), 2)
            + ROUND(COALESCE(s.items_subtotal, 0) * i.invoice_tax_rate, 2)
            - i.discount
        )
      ) > %s
"""


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        activity: ActivityLogger,
        event_bus: EventBus,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.activity = activity
        self.event_bus = event_bus
        self.config = config or BillingConfig()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _next_invoice_number(self, cur: TransactionCursor, user_id: UUID, year: int) -> str:
        """
        Allocate the next number for an owner and year: INV-YYYY-NNNN.

        Serialized per owner and year with a transaction-scoped advisory lock,
        so two concurrent creations never read the same "last" number.
        """
        prefix = f"{self.config.invoice_number_prefix}-{year}-"

        cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"invoice_number:{user_id}:{year}",))
        cur.execute(
            """
            SELECT invoice_number FROM invoices
            WHERE user_id = %s AND invoice_number LIKE %s
            ORDER BY LENGTH(invoice_number) DESC, invoice_number DESC
            LIMIT 1
            """,
            (user_id, f"{prefix}%")
        )
        row = cur.fetchone()

        sequence = 1
        if row is not None:
            try:
                sequence = int(row["invoice_number"].rsplit("-", 1)[-1]) + 1
            except ValueError:
                logger.warning(f"Unparseable invoice number {row['invoice_number']!r}, restarting sequence")

        return f"{prefix}{sequence:04d}"

    def insert_invoice(
        self,
        cur: TransactionCursor,
        *,
        user_id: UUID,
        client_id: UUID,
        items: list[InvoiceItemCreate],
        tax_rate: Decimal,
        tax_exempt: bool,
        currency: Currency,
        issue_date: date,
        due_date: date,
        status: InvoiceStatus = InvoiceStatus.DRAFT,
        notes: str | None = None,
        recurring_invoice_id: UUID | None = None,
    ) -> Invoice:
        """
        Insert an invoice and its items on the caller's transaction.

        Totals are computed here from the items and the frozen tax rate.
        Used by create() and by the recurring scheduler, which owns a
        larger transaction around the template row.
        """
        totals = calculate_totals(items, tax_rate)
        invoice_number = self._next_invoice_number(cur, user_id, issue_date.year)
        now = now_utc()
        invoice_id = uuid4()

        cur.execute(
            """
            INSERT INTO invoices (
                id, user_id, client_id, recurring_invoice_id,
                invoice_number, status,
                subtotal, tax, discount, total,
                currency, invoice_tax_rate, tax_exempt_at_time,
                issue_date, due_date, sent_at, notes,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s,
                %s, %s,
                %s, %s, %s, %s,
                %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                invoice_id, user_id, client_id, recurring_invoice_id,
                invoice_number, status.value,
                totals.subtotal, totals.tax, totals.discount, totals.total,
                currency.value, tax_rate, tax_exempt,
                issue_date, due_date, now if status == InvoiceStatus.SENT else None, notes,
                now, now
            )
        )
        invoice = Invoice.model_validate(cur.fetchone())

        self._insert_items(cur, invoice.id, items)
        return invoice

    def _insert_items(self, cur: TransactionCursor, invoice_id: UUID, items: list[InvoiceItemCreate]) -> None:
        now = now_utc()
        for item in items:
            cur.execute(
                """
                INSERT INTO invoice_items (
                    id, invoice_id, description, quantity, unit_price, total, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (uuid4(), invoice_id, item.description, item.quantity, item.unit_price, item.total, now, now)
            )

    def _resolve_tax(self, client: Client, requested: Decimal | None) -> tuple[Decimal, bool]:
        """Tax rate to freeze: exempt clients pay none, then explicit, then client, then default."""
        if client.tax_exempt:
            return Decimal("0"), True
        if requested is not None:
            return requested, False
        if client.tax_rate is not None:
            return client.tax_rate, False
        return self.config.default_tax_rate, False

    def _get_client(self, client_id: UUID) -> Client:
        row = self.postgres.execute_single(
            "SELECT * FROM clients WHERE id = %s AND deleted_at IS NULL",
            (client_id,)
        )
        if row is None:
            raise ValueError(f"Client {client_id} not found")
        return Client.model_validate(row)

    def create(self, data: InvoiceCreate) -> Invoice:
        """
        Create an invoice with its items.

        The client's tax rate and exemption are frozen onto the invoice.
        Currency comes from the request, else the client, else the default.

        Args:
            data: Invoice creation data (draft or sent)

        Returns:
            Created invoice

        Raises:
            ValueError: If client not found or due date precedes issue date
        """
        user_id = get_current_user_id()
        client = self._get_client(data.client_id)

        tax_rate, tax_exempt = self._resolve_tax(client, data.tax_rate)
        currency = data.currency or client.currency or Currency.parse(self.config.default_currency)
        issue_date = data.issue_date or today_utc()
        due_date = data.due_date or issue_date + timedelta(days=self.config.invoice_due_days)
        if due_date < issue_date:
            raise ValueError("due_date must be on or after issue_date")

        with self.postgres.transaction() as cur:
            invoice = self.insert_invoice(
                cur,
                user_id=user_id,
                client_id=client.id,
                items=data.items,
                tax_rate=tax_rate,
                tax_exempt=tax_exempt,
                currency=currency,
                issue_date=issue_date,
                due_date=due_date,
                status=data.status,
                notes=data.notes,
            )
            self.activity.log(
                invoice.id,
                ActivityAction.CREATED,
                {
                    "invoice_number": invoice.invoice_number,
                    "total": invoice.total,
                    "client_id": client.id,
                },
                cursor=cur,
            )
            if invoice.status == InvoiceStatus.SENT:
                self.activity.log(
                    invoice.id,
                    ActivityAction.SENT,
                    {"sent_at": invoice.sent_at, "client_email": client.email},
                    cursor=cur,
                )

        logger.info(f"Invoice {invoice.invoice_number} created ({invoice.status.value})")

        if invoice.status == InvoiceStatus.SENT:
            self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found and not deleted, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL",
            (invoice_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def get_items(self, invoice_id: UUID) -> list[InvoiceItem]:
        """Line items of an invoice in insertion order."""
        rows = self.postgres.execute(
            "SELECT * FROM invoice_items WHERE invoice_id = %s ORDER BY created_at, id",
            (invoice_id,)
        )
        return [InvoiceItem.model_validate(row) for row in rows]

    def get_timeline(self, invoice_id: UUID, tz_name: str = "UTC") -> list[dict[str, Any]]:
        """Activity timeline for display, newest first."""
        return self.activity.get_timeline(invoice_id, tz_name)

    def list_for_client(self, client_id: UUID, limit: int = 50) -> list[Invoice]:
        """Invoices for a client, newest first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE client_id = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (client_id, limit)
        )

        return [Invoice.model_validate(row) for row in rows]

    def list_by_status(self, status: InvoiceStatus | str, limit: int = 50) -> list[Invoice]:
        """Invoices in one status, earliest due first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE status = %s AND deleted_at IS NULL
            ORDER BY due_date ASC, created_at ASC
            LIMIT %s
            """,
            (InvoiceStatus(status).value, limit)
        )

        return [Invoice.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Guarded mutations
    # -------------------------------------------------------------------------

    @staticmethod
    def _lock(cur: TransactionCursor, invoice_id: UUID) -> Invoice | None:
        cur.execute(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
            (invoice_id,)
        )
        row = cur.fetchone()
        return Invoice.model_validate(row) if row is not None else None

    def _lock_or_raise(self, cur: TransactionCursor, invoice_id: UUID) -> Invoice:
        invoice = self._lock(cur, invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        return invoice

    def update(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Edit a draft invoice.

        Items, when given, replace the existing ones and totals are recomputed
        with the invoice's frozen tax rate.

        Raises:
            ValueError: If invoice not found or dates are inconsistent
            InvoiceNotEditableError: If the invoice is no longer a draft
        """
        with self.postgres.transaction() as cur:
            current = self._lock_or_raise(cur, invoice_id)
            if not current.status.is_editable:
                raise InvoiceNotEditableError(invoice_id, current.status)

            updates: dict[str, Any] = {}
            for field in ("client_id", "issue_date", "due_date", "notes"):
                if field in data.model_fields_set:
                    updates[field] = getattr(data, field)

            issue_date = updates.get("issue_date") or current.issue_date
            due_date = updates.get("due_date") or current.due_date
            if due_date < issue_date:
                raise ValueError("due_date must be on or after issue_date")

            item_change = None
            if data.items is not None:
                cur.execute("SELECT COUNT(*) AS count FROM invoice_items WHERE invoice_id = %s", (invoice_id,))
                old_count = (cur.fetchone() or {}).get("count", 0)
                cur.execute("DELETE FROM invoice_items WHERE invoice_id = %s", (invoice_id,))
                self._insert_items(cur, invoice_id, data.items)
                totals = calculate_totals(data.items, current.invoice_tax_rate, current.discount)
                updates.update(totals.as_dict())
                item_change = {"old": old_count, "new": len(data.items)}

            if not updates:
                return current

            set_parts = [f"{field} = %s" for field in updates]
            params = list(updates.values())
            set_parts.append("updated_at = %s")
            params.append(now_utc())
            params.append(invoice_id)

            cur.execute(
                f"""
                UPDATE invoices
                SET {', '.join(set_parts)}
                WHERE id = %s
                RETURNING *
                """,
                tuple(params)
            )
            updated = Invoice.model_validate(cur.fetchone())

            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json"),
            )
            if item_change is not None:
                changes["items"] = item_change
            if changes:
                self.activity.log(
                    invoice_id,
                    ActivityAction.UPDATED,
                    {"changes": changes, "updated_at": updated.updated_at},
                    cursor=cur,
                )

        return updated

    def send(self, invoice_id: UUID) -> Invoice:
        """
        Send a draft invoice.

        Returns:
            Updated invoice with SENT status

        Raises:
            ValueError: If invoice not found
            InvalidTransitionError: If the invoice is not a draft
        """
        with self.postgres.transaction() as cur:
            current = self._lock_or_raise(cur, invoice_id)
            assert_transition(invoice_id, current.status, InvoiceStatus.SENT)

            now = now_utc()
            cur.execute(
                """
                UPDATE invoices
                SET status = %s, sent_at = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (InvoiceStatus.SENT.value, now, now, invoice_id)
            )
            updated = Invoice.model_validate(cur.fetchone())

            self.activity.log(
                invoice_id,
                ActivityAction.SENT,
                {"sent_at": now, "invoice_number": updated.invoice_number},
                cursor=cur,
            )

        logger.info(f"Invoice {updated.invoice_number} sent")
        self.event_bus.publish(InvoiceSent.create(invoice=updated))

        return updated

    def mark_paid(self, invoice_id: UUID) -> Invoice:
        """
        Mark an invoice paid without recording a payment (settled off-system).

        Raises:
            ValueError: If invoice not found
            InvalidTransitionError: If the invoice is not sent or overdue
        """
        with self.postgres.transaction() as cur:
            current = self._lock_or_raise(cur, invoice_id)
            assert_transition(invoice_id, current.status, InvoiceStatus.PAID)

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
            updated = Invoice.model_validate(cur.fetchone())

            self.activity.log(
                invoice_id,
                ActivityAction.PAID,
                {"paid_at": now, "amount": updated.total, "manual": True},
                cursor=cur,
            )

        logger.info(f"Invoice {updated.invoice_number} marked as paid")
        self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated

    def cancel(self, invoice_id: UUID, reason: str | None = None) -> Invoice:
        """
        Cancel an invoice.

        Raises:
            ValueError: If invoice not found
            InvalidTransitionError: If the invoice is already paid or cancelled
        """
        with self.postgres.transaction() as cur:
            current = self._lock_or_raise(cur, invoice_id)
            assert_transition(invoice_id, current.status, InvoiceStatus.CANCELLED)

            now = now_utc()
            cur.execute(
                """
                UPDATE invoices
                SET status = %s, cancelled_at = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (InvoiceStatus.CANCELLED.value, now, now, invoice_id)
            )
            updated = Invoice.model_validate(cur.fetchone())

            self.activity.log(
                invoice_id,
                ActivityAction.CANCELLED,
                {"cancelled_at": now, "reason": reason, "previous_status": current.status.value},
                cursor=cur,
            )

        logger.info(f"Invoice {updated.invoice_number} cancelled")
        return updated

    def delete(self, invoice_id: UUID) -> bool:
        """
        Soft delete an invoice and hard delete its items.

        Returns:
            True if deleted, False if not found

        Raises:
            ValueError: If the invoice is paid
        """
        with self.postgres.transaction() as cur:
            current = self._lock(cur, invoice_id)
            if current is None:
                return False
            if current.status == InvoiceStatus.PAID:
                raise ValueError(f"Invoice {invoice_id} is paid and cannot be deleted")

            now = now_utc()
            self.activity.log(
                invoice_id,
                ActivityAction.DELETED,
                {"deleted_at": now, "invoice_number": current.invoice_number},
                cursor=cur,
            )
            cur.execute("DELETE FROM invoice_items WHERE invoice_id = %s", (invoice_id,))
            cur.execute(
                "UPDATE invoices SET deleted_at = %s, updated_at = %s WHERE id = %s",
                (now, now, invoice_id)
            )

        logger.info(f"Invoice {current.invoice_number} deleted")
        return True

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    def _recalculate_locked(self, cur: TransactionCursor, invoice: Invoice) -> Invoice | None:
        """Recompute totals under an existing lock. Returns the updated invoice, or None if in sync."""
        cur.execute("SELECT quantity, unit_price FROM invoice_items WHERE invoice_id = %s", (invoice.id,))
        computed = calculate_totals(cur.fetchall(), invoice.invoice_tax_rate, invoice.discount)

        if (
            computed.subtotal == invoice.subtotal
            and computed.tax == invoice.tax
            and computed.total == invoice.total
        ):
            return None

        cur.execute(
            """
            UPDATE invoices
            SET subtotal = %s, tax = %s, total = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (computed.subtotal, computed.tax, computed.total, now_utc(), invoice.id)
        )
        return Invoice.model_validate(cur.fetchone())

    def recalculate_totals(self, invoice_id: UUID) -> Invoice:
        """
        Recompute stored totals from the current items.

        Idempotent: a second call on an unchanged invoice writes nothing.

        Raises:
            ValueError: If invoice not found
        """
        with self.postgres.transaction() as cur:
            current = self._lock_or_raise(cur, invoice_id)
            updated = self._recalculate_locked(cur, current)

        return updated or current

    def reconcile_totals(self, limit: int | None = None) -> SweepResult:
        """
        Correct every invoice whose stored total drifted from its items.

        Candidates are found in SQL and re-verified under the row lock.
        Each correction is its own transaction and is logged as an update.

        Args:
            limit: Stop after this many candidates

        Returns:
            SweepResult with one item per candidate
        """
        result = SweepResult()
        tolerance = self.config.reconcile_tolerance
        seen = 0

        for chunk in self.postgres.iter_chunks(
            _DRIFTED_INVOICES,
            (tolerance,),
            chunk_size=self.config.sweep_chunk_size,
            key_column="i.id",
        ):
            for row in chunk:
                if limit is not None and seen >= limit:
                    return result
                seen += 1
                invoice_id = row["id"]

                try:
                    with self.postgres.transaction() as cur:
                        current = self._lock(cur, invoice_id)
                        if current is None:
                            result.record_skipped(invoice_id, "Invoice no longer exists")
                            continue

                        cur.execute(
                            "SELECT quantity, unit_price FROM invoice_items WHERE invoice_id = %s",
                            (invoice_id,)
                        )
                        computed = calculate_totals(cur.fetchall(), current.invoice_tax_rate, current.discount)
                        if not totals_diverge(current.total, computed, tolerance):
                            result.record_skipped(invoice_id, "Totals already match")
                            continue

                        cur.execute(
                            """
                            UPDATE invoices
                            SET subtotal = %s, tax = %s, total = %s, updated_at = %s
                            WHERE id = %s
                            """,
                            (computed.subtotal, computed.tax, computed.total, now_utc(), invoice_id)
                        )
                        self.activity.log(
                            invoice_id,
                            ActivityAction.UPDATED,
                            {
                                "automated": True,
                                "reason": "totals_reconciled",
                                "changes": {"total": {"old": current.total, "new": computed.total}},
                            },
                            cursor=cur,
                        )

                    result.record_processed(invoice_id, old_total=current.total, new_total=computed.total)
                except Exception as e:
                    logger.exception(f"Reconciling totals failed for invoice {invoice_id}")
                    result.record_error(invoice_id, str(e))

        logger.info(
            f"Totals reconciliation: {result.processed} corrected, "
            f"{result.skipped} skipped, {result.errors} errors"
        )
        return result
