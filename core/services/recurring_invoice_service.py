"""
Recurring invoice templates and the scheduler that turns them into invoices.

Template status: active <-> paused, either -> cancelled (terminal).

generate_due_invoices() is safe to run from cron and from page loads at the
same time: each template is locked and re-checked with should_generate()
before anything is written, and advancing next_run_date in the same
transaction is what stops a second run from generating again.
"""

import logging
from collections import Counter
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.activity import ActivityLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import RecurringInvoiceGenerated
from core.exceptions import InvalidTransitionError
from core.models import (
    ActivityAction,
    Currency,
    Invoice,
    InvoiceItemCreate,
    InvoiceStatus,
    RecurringFrequency,
    RecurringInvoice,
    RecurringInvoiceCreate,
    RecurringInvoiceUpdate,
    RecurringStatus,
    SweepResult,
)
from core.money import ZERO, to_money
from core.schedule import calculate_next_run, should_generate
from core.services.invoice_service import InvoiceService
from utils.user_context import get_current_user_id
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

# Valid columns that can be updated
_UPDATABLE_COLUMNS = {"title", "amount", "frequency", "next_run_date", "notes"}


class RecurringInvoiceService:
    """Service for recurring templates and scheduled generation."""

    def __init__(
        self,
        postgres: PostgresClient,
        activity: ActivityLogger,
        event_bus: EventBus,
        invoice_service: InvoiceService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.activity = activity
        self.event_bus = event_bus
        self.invoice_service = invoice_service
        self.config = config or BillingConfig()

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def create(self, data: RecurringInvoiceCreate) -> RecurringInvoice:
        """
        Create an active template.

        Raises:
            ValueError: If start_date is in the past or the client doesn't exist
        """
        user_id = get_current_user_id()
        if data.start_date < today_utc():
            raise ValueError("start_date cannot be in the past")

        client = self.postgres.execute_single(
            "SELECT id FROM clients WHERE id = %s AND deleted_at IS NULL",
            (data.client_id,)
        )
        if client is None:
            raise ValueError(f"Client {data.client_id} not found")

        now = now_utc()
        row = self.postgres.execute_returning(
            """
            INSERT INTO recurring_invoices (
                id, user_id, client_id, title, amount, frequency, status,
                start_date, next_run_date, last_run_date, notes,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), user_id, data.client_id, data.title, data.amount,
                data.frequency.value, RecurringStatus.ACTIVE.value,
                data.start_date, data.next_run_date or data.start_date, None, data.notes,
                now, now
            )
        )[0]

        template = RecurringInvoice.model_validate(row)
        logger.info(f"Recurring invoice {template.id} created ({template.frequency.value})")
        return template

    def get_by_id(self, recurring_id: UUID) -> RecurringInvoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM recurring_invoices WHERE id = %s AND deleted_at IS NULL",
            (recurring_id,)
        )
        return RecurringInvoice.model_validate(row) if row is not None else None

    def update(self, recurring_id: UUID, data: RecurringInvoiceUpdate) -> RecurringInvoice:
        """
        Update template fields.

        Raises:
            ValueError: If not found, cancelled, or next_run_date precedes start_date
        """
        current = self.get_by_id(recurring_id)
        if current is None:
            raise ValueError(f"Recurring invoice {recurring_id} not found")
        if current.status == RecurringStatus.CANCELLED:
            raise ValueError(f"Recurring invoice {recurring_id} is cancelled and cannot be edited")

        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if k in _UPDATABLE_COLUMNS}
        if not updates:
            return current
        if updates.get("next_run_date") and updates["next_run_date"] < current.start_date:
            raise ValueError("next_run_date must be on or after start_date")
        if "frequency" in updates:
            updates["frequency"] = RecurringFrequency(updates["frequency"]).value

        set_parts = [f"{field} = %s" for field in updates]
        params = list(updates.values())
        set_parts.append("updated_at = %s")
        params.append(now_utc())
        params.append(recurring_id)

        row = self.postgres.execute_returning(
            f"""
            UPDATE recurring_invoices
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            tuple(params)
        )[0]

        return RecurringInvoice.model_validate(row)

    def _transition(self, recurring_id: UUID, target: RecurringStatus, allowed: str) -> RecurringInvoice:
        with self.postgres.transaction() as cur:
            cur.execute(
                "SELECT * FROM recurring_invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                (recurring_id,)
            )
            row = cur.fetchone()
            if row is None:
                raise ValueError(f"Recurring invoice {recurring_id} not found")
            current = RecurringInvoice.model_validate(row)

            if not getattr(current.status, allowed):
                raise InvalidTransitionError("Recurring invoice", recurring_id, current.status, target)

            cur.execute(
                """
                UPDATE recurring_invoices
                SET status = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (target.value, now_utc(), recurring_id)
            )
            updated = RecurringInvoice.model_validate(cur.fetchone())

        logger.info(f"Recurring invoice {recurring_id} {current.status.value} -> {target.value}")
        return updated

    def pause(self, recurring_id: UUID) -> RecurringInvoice:
        """Stop generating until resumed. Only active templates can pause."""
        return self._transition(recurring_id, RecurringStatus.PAUSED, "can_pause")

    def resume(self, recurring_id: UUID) -> RecurringInvoice:
        """Resume a paused template. An overdue next_run_date generates on the next sweep."""
        return self._transition(recurring_id, RecurringStatus.ACTIVE, "can_resume")

    def cancel(self, recurring_id: UUID) -> RecurringInvoice:
        """Stop a template for good."""
        return self._transition(recurring_id, RecurringStatus.CANCELLED, "can_cancel")

    def delete(self, recurring_id: UUID) -> bool:
        """Soft delete. Invoices already generated keep their link."""
        current = self.get_by_id(recurring_id)
        if current is None:
            return False

        now = now_utc()
        self.postgres.execute_returning(
            """
            UPDATE recurring_invoices
            SET deleted_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING id
            """,
            (now, now, recurring_id)
        )
        return True

    def list_all(self, status: RecurringStatus | str | None = None, limit: int = 50) -> list[RecurringInvoice]:
        """Templates ordered by next run."""
        if status is None:
            rows = self.postgres.execute(
                """
                SELECT * FROM recurring_invoices
                WHERE deleted_at IS NULL
                ORDER BY next_run_date ASC
                LIMIT %s
                """,
                (limit,)
            )
        else:
            rows = self.postgres.execute(
                """
                SELECT * FROM recurring_invoices
                WHERE status = %s AND deleted_at IS NULL
                ORDER BY next_run_date ASC
                LIMIT %s
                """,
                (RecurringStatus(status).value, limit)
            )
        return [RecurringInvoice.model_validate(row) for row in rows]

    def list_for_client(self, client_id: UUID) -> list[RecurringInvoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM recurring_invoices
            WHERE client_id = %s AND deleted_at IS NULL
            ORDER BY next_run_date ASC
            """,
            (client_id,)
        )
        return [RecurringInvoice.model_validate(row) for row in rows]

    def list_invoices(self, recurring_id: UUID, limit: int = 50) -> list[Invoice]:
        """Invoices generated from a template, newest first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE recurring_invoice_id = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (recurring_id, limit)
        )
        return [Invoice.model_validate(row) for row in rows]

    def get_summary(self, horizon_days: int = 30) -> dict[str, Any]:
        """
        Counts by status, per-frequency revenue of active templates, and runs
        coming up within horizon_days.
        """
        templates = [
            RecurringInvoice.model_validate(row)
            for row in self.postgres.execute(
                "SELECT * FROM recurring_invoices WHERE deleted_at IS NULL ORDER BY next_run_date ASC"
            )
        ]
        today = today_utc()
        horizon = today + timedelta(days=horizon_days)
        by_status = Counter(t.status for t in templates)
        active = [t for t in templates if t.status == RecurringStatus.ACTIVE]

        revenue = {
            frequency.value: to_money(sum((t.amount for t in active if t.frequency == frequency), ZERO))
            for frequency in RecurringFrequency
        }

        return {
            "total_active": by_status[RecurringStatus.ACTIVE],
            "total_paused": by_status[RecurringStatus.PAUSED],
            "total_cancelled": by_status[RecurringStatus.CANCELLED],
            "revenue_by_frequency": revenue,
            "upcoming_runs": [
                {
                    "id": t.id,
                    "title": t.title,
                    "amount": t.amount,
                    "frequency": t.frequency.value,
                    "next_run_date": t.next_run_date,
                    "days_until_run": max((t.next_run_date - today).days, 0),
                }
                for t in active
                if t.next_run_date <= horizon
            ],
        }

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    @staticmethod
    def _invoice_notes(template: RecurringInvoice, today: date) -> str:
        notes = f"Generated from recurring invoice: {template.title}"
        if template.notes:
            notes += f"\n\n{template.notes}"
        notes += f"\n\nFrequency: {template.frequency.label}"
        notes += f"\nGenerated: {today.strftime('%b %d, %Y')}"
        return notes

    def generate_due_invoices(self, user_id: UUID | None = None, limit: int | None = None) -> SweepResult:
        """
        Generate one invoice for every active template whose next run is due.

        Each template is its own transaction: lock, re-check, insert a SENT
        invoice for the template amount (tax 0, client currency), advance
        last_run_date to today and next_run_date one period after it, log
        the activity. Failures are isolated per template.

        Args:
            user_id: Restrict to one owner (page-load sweep)
            limit: Stop after this many candidates

        Returns:
            SweepResult with one item per candidate template
        """
        today = today_utc()
        result = SweepResult()

        query = """
            SELECT id FROM recurring_invoices
            WHERE status = 'active' AND next_run_date <= %s AND deleted_at IS NULL
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
                self._generate_one(row["id"], today, result)

        logger.info(
            f"Recurring generation: {result.processed} generated, "
            f"{result.skipped} skipped, {result.errors} errors"
        )
        return result

    def _generate_one(self, recurring_id: UUID, today: date, result: SweepResult) -> None:
        try:
            with self.postgres.transaction() as cur:
                cur.execute(
                    "SELECT * FROM recurring_invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                    (recurring_id,)
                )
                row = cur.fetchone()
                if row is None:
                    result.record_skipped(recurring_id, "Recurring invoice no longer exists")
                    return
                template = RecurringInvoice.model_validate(row)

                if not should_generate(template.status, template.next_run_date, today):
                    if template.status != RecurringStatus.ACTIVE:
                        reason = f"Status changed to {template.status.value}"
                    else:
                        reason = "Already generated for this period"
                    result.record_skipped(recurring_id, reason)
                    return

                cur.execute("SELECT currency FROM clients WHERE id = %s", (template.client_id,))
                client = cur.fetchone()
                if client and client.get("currency"):
                    currency = Currency.parse(client["currency"])
                else:
                    currency = Currency.parse(self.config.default_currency)

                invoice = self.invoice_service.insert_invoice(
                    cur,
                    user_id=template.user_id,
                    client_id=template.client_id,
                    items=[InvoiceItemCreate(
                        description=template.title,
                        quantity=Decimal("1.00"),
                        unit_price=template.amount,
                    )],
                    tax_rate=Decimal("0"),
                    tax_exempt=False,
                    currency=currency,
                    issue_date=today,
                    due_date=today + timedelta(days=self.config.recurring_due_days),
                    status=InvoiceStatus.SENT,
                    notes=self._invoice_notes(template, today),
                    recurring_invoice_id=template.id,
                )

                next_run = calculate_next_run(template.frequency, today)
                cur.execute(
                    """
                    UPDATE recurring_invoices
                    SET last_run_date = %s, next_run_date = %s, updated_at = %s
                    WHERE id = %s
                    RETURNING *
                    """,
                    (today, next_run, now_utc(), recurring_id)
                )
                updated = RecurringInvoice.model_validate(cur.fetchone())

                self.activity.log(
                    invoice.id,
                    ActivityAction.GENERATED_FROM_RECURRING,
                    {
                        "automated": True,
                        "recurring_invoice_id": template.id,
                        "recurring_title": template.title,
                        "frequency": template.frequency.value,
                        "next_run_date": next_run,
                        "processed_at": now_utc(),
                    },
                    cursor=cur,
                )
        except Exception as e:
            logger.exception(f"Generating invoice from recurring template {recurring_id} failed")
            result.record_error(recurring_id, str(e))
            return

        result.record_processed(
            recurring_id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            amount=invoice.total,
            next_run_date=updated.next_run_date,
        )
        self.event_bus.publish(RecurringInvoiceGenerated.create(invoice=invoice, recurring_invoice=updated))
