"""
Reminder sweeps.

Three tiers, each keyed to its own activity action:
- due_soon: SENT, due within the next due_soon_days
- overdue: OVERDUE
- follow_up: OVERDUE for more than follow_up_after_days

There is no "reminder sent" flag. An invoice is reminded when the activity
log holds no entry of the tier's action within the tier's cooldown; that
check filters the candidate query and is repeated under the row lock.
The sweep records the reminder only. Delivery is left to whoever reads the
activity log.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.activity import ActivityLogger
from core.config import BillingConfig
from core.models import ActivityAction, Invoice, InvoiceStatus, SweepResult
from utils.timezone import days_ago, now_utc, today_utc

logger = logging.getLogger(__name__)


def urgency_level(days_overdue: int) -> str:
    """Escalation label for a follow-up reminder."""
    if days_overdue > 90:
        return "critical"
    if days_overdue > 60:
        return "high"
    if days_overdue > 30:
        return "medium"
    return "low"


@dataclass(frozen=True)
class _Tier:
    """Selection rule for one reminder tier, resolved for a given day."""

    reminder_type: str
    action: ActivityAction
    status: InvoiceStatus
    cooldown_days: int
    due_from: date | None = None
    due_to: date | None = None

    def matches(self, invoice: Invoice) -> str | None:
        """Reason the invoice no longer qualifies, None if it does."""
        if invoice.status != self.status:
            return f"Status changed to {invoice.status.value}"
        if self.due_from is not None and invoice.due_date < self.due_from:
            return "No longer in reminder window"
        if self.due_to is not None and invoice.due_date > self.due_to:
            return "No longer in reminder window"
        return None


class ReminderService:
    """Service for the due-soon, overdue and follow-up reminder sweeps."""

    def __init__(self, postgres: PostgresClient, activity: ActivityLogger, config: BillingConfig | None = None):
        self.postgres = postgres
        self.activity = activity
        self.config = config or BillingConfig()

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    def _due_soon_tier(self, today: date) -> _Tier:
        return _Tier(
            reminder_type="due_soon",
            action=ActivityAction.DUE_SOON_REMINDER,
            status=InvoiceStatus.SENT,
            cooldown_days=self.config.due_soon_cooldown_days,
            due_from=today,
            due_to=today + timedelta(days=self.config.due_soon_days),
        )

    def _overdue_tier(self, today: date) -> _Tier:
        return _Tier(
            reminder_type="overdue",
            action=ActivityAction.OVERDUE_REMINDER,
            status=InvoiceStatus.OVERDUE,
            cooldown_days=self.config.overdue_reminder_cooldown_days,
        )

    def _follow_up_tier(self, today: date) -> _Tier:
        return _Tier(
            reminder_type="follow_up",
            action=ActivityAction.FOLLOW_UP_REMINDER,
            status=InvoiceStatus.OVERDUE,
            cooldown_days=self.config.follow_up_cooldown_days,
            due_to=today - timedelta(days=self.config.follow_up_after_days + 1),
        )

    def process_due_soon_reminders(self, user_id: UUID | None = None, limit: int | None = None) -> SweepResult:
        """Remind SENT invoices falling due within the due-soon window."""
        return self._run_tier(self._due_soon_tier(today_utc()), user_id, limit)

    def process_overdue_reminders(self, user_id: UUID | None = None, limit: int | None = None) -> SweepResult:
        """Remind OVERDUE invoices."""
        return self._run_tier(self._overdue_tier(today_utc()), user_id, limit)

    def process_follow_up_reminders(self, user_id: UUID | None = None, limit: int | None = None) -> SweepResult:
        """Escalating reminders for invoices overdue past the follow-up threshold."""
        return self._run_tier(self._follow_up_tier(today_utc()), user_id, limit)

    def process_reminders(self, user_id: UUID | None = None) -> dict[str, SweepResult]:
        """Run all three tiers. Keys are the reminder types."""
        return {
            "due_soon": self.process_due_soon_reminders(user_id),
            "overdue": self.process_overdue_reminders(user_id),
            "follow_up": self.process_follow_up_reminders(user_id),
        }

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def _run_tier(self, tier: _Tier, user_id: UUID | None, limit: int | None) -> SweepResult:
        today = today_utc()
        since = days_ago(tier.cooldown_days)
        result = SweepResult()

        query = """
            SELECT i.id FROM invoices i
            WHERE i.status = %s AND i.deleted_at IS NULL
              AND NOT EXISTS (
                  SELECT 1 FROM invoice_activities a
                  WHERE a.invoice_id = i.id AND a.action = %s AND a.created_at >= %s
              )
        """
        params: tuple = (tier.status.value, tier.action.value, since)
        if tier.due_from is not None:
            query += " AND i.due_date >= %s"
            params += (tier.due_from,)
        if tier.due_to is not None:
            query += " AND i.due_date <= %s"
            params += (tier.due_to,)
        if user_id is not None:
            query += " AND i.user_id = %s"
            params += (user_id,)

        seen = 0
        for chunk in self.postgres.iter_chunks(
            query, params, chunk_size=self.config.sweep_chunk_size, key_column="i.id"
        ):
            for row in chunk:
                if limit is not None and seen >= limit:
                    return result
                seen += 1
                self._remind_one(row["id"], tier, since, today, result)

        if result.total:
            logger.info(
                f"{tier.reminder_type} reminders: {result.processed} sent, "
                f"{result.skipped} skipped, {result.errors} errors"
            )
        return result

    def _remind_one(self, invoice_id: UUID, tier: _Tier, since: datetime, today: date, result: SweepResult) -> None:
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

                reason = tier.matches(invoice)
                if reason is None and self.activity.has_recent(invoice_id, tier.action, since, cursor=cur):
                    reason = "Reminder already sent within cooldown"
                if reason is not None:
                    logger.debug(f"Skipping {tier.reminder_type} reminder for {invoice_id}: {reason}")
                    result.record_skipped(invoice_id, reason)
                    return

                cur.execute("SELECT email FROM clients WHERE id = %s", (invoice.client_id,))
                client = cur.fetchone()

                metadata: dict[str, Any] = {
                    "automated": True,
                    "reminder_type": tier.reminder_type,
                    "client_email": client["email"] if client else None,
                    "processed_at": now_utc(),
                }
                if tier.status == InvoiceStatus.SENT:
                    metadata["days_until_due"] = invoice.days_until_due(today)
                else:
                    metadata["days_overdue"] = invoice.days_overdue(today)
                if tier.action == ActivityAction.FOLLOW_UP_REMINDER:
                    metadata["urgency_level"] = urgency_level(invoice.days_overdue(today))

                self.activity.log(invoice_id, tier.action, metadata, cursor=cur)
        except Exception as e:
            logger.exception(f"{tier.reminder_type} reminder for invoice {invoice_id} failed")
            result.record_error(invoice_id, str(e))
            return

        detail = {k: v for k, v in metadata.items() if k not in ("automated", "processed_at", "client_email")}
        result.record_processed(invoice_id, invoice_number=invoice.invoice_number, **detail)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_reminder_summary(self) -> dict[str, Any]:
        """
        Counts of invoices in each tier, reminders logged in the last week and
        reminders expected over the next 30 days.
        """
        today = today_utc()
        due_soon = self._due_soon_tier(today)
        follow_up = self._follow_up_tier(today)

        due_soon_count = self.postgres.execute_scalar(
            """
            SELECT COUNT(*) FROM invoices
            WHERE status = 'sent' AND due_date >= %s AND due_date <= %s AND deleted_at IS NULL
            """,
            (due_soon.due_from, due_soon.due_to)
        )
        overdue_count = self.postgres.execute_scalar(
            "SELECT COUNT(*) FROM invoices WHERE status = 'overdue' AND deleted_at IS NULL"
        )
        long_overdue_count = self.postgres.execute_scalar(
            """
            SELECT COUNT(*) FROM invoices
            WHERE status = 'overdue' AND due_date <= %s AND deleted_at IS NULL
            """,
            (follow_up.due_to,)
        )

        recent = self.postgres.execute(
            """
            SELECT a.invoice_id, a.action, a.created_at, i.invoice_number
            FROM invoice_activities a
            JOIN invoices i ON i.id = a.invoice_id
            WHERE a.action IN (%s, %s, %s) AND a.created_at >= %s
            ORDER BY a.created_at DESC
            """,
            (
                ActivityAction.DUE_SOON_REMINDER.value,
                ActivityAction.OVERDUE_REMINDER.value,
                ActivityAction.FOLLOW_UP_REMINDER.value,
                days_ago(7),
            )
        )

        upcoming = [
            Invoice.model_validate(row)
            for row in self.postgres.execute(
                """
                SELECT * FROM invoices
                WHERE status = 'sent' AND due_date > %s AND due_date <= %s AND deleted_at IS NULL
                ORDER BY due_date ASC
                """,
                (today, today + timedelta(days=30))
            )
        ]

        return {
            "due_soon_count": due_soon_count or 0,
            "overdue_count": overdue_count or 0,
            "long_overdue_count": long_overdue_count or 0,
            "recent_reminders": [
                {
                    "invoice_id": row["invoice_id"],
                    "invoice_number": row["invoice_number"],
                    "reminder_type": row["action"],
                    "created_at": row["created_at"],
                }
                for row in recent
            ],
            "upcoming_reminders": [
                {
                    "invoice_id": invoice.id,
                    "invoice_number": invoice.invoice_number,
                    "due_date": invoice.due_date,
                    "reminder_date": max(invoice.due_date - timedelta(days=self.config.due_soon_days), today),
                }
                for invoice in upcoming
            ],
        }
