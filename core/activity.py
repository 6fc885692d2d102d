"""
Invoice activity log.

Every lifecycle event on an invoice is appended here. The log is:
- Append-only (entries never modified or deleted)
- Actor-attributed (NULL actor means a scheduled job with no owner context)
- The dedup store for automated reminders: "no reminder of this kind
  within the cooldown" is read straight from this table

Writes that belong to a larger state change take the caller's transaction
cursor so the entry commits or rolls back with the change itself.
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, TransactionCursor
from core.models.activity import ActivityAction, InvoiceActivity
from utils.timezone import now_utc, to_local
from utils.user_context import peek_current_user_id


def _dumps(obj: Any) -> str:
    # Decimal, date, UUID serialize as their string form
    return json.dumps(obj, default=str)


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    for key in set(old.keys()) | set(new.keys()):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class ActivityLogger:
    """
    Append and read invoice activity entries.

    Usage:
        activity = ActivityLogger(postgres)

        # Standalone entry
        activity.log(invoice.id, ActivityAction.PDF_GENERATED)

        # Inside a state change
        with postgres.transaction() as cur:
            ...
            activity.log(invoice.id, ActivityAction.SENT, {"client_email": email}, cursor=cur)

        timeline = activity.get_timeline(invoice.id, tz_name="Europe/Berlin")
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log(
        self,
        invoice_id: UUID,
        action: ActivityAction,
        metadata: dict[str, Any] | None = None,
        cursor: TransactionCursor | None = None,
        user_id: UUID | None = None,
    ) -> InvoiceActivity:
        """
        Append one entry.

        Args:
            invoice_id: Invoice the entry belongs to
            action: What happened
            metadata: Free-form details (amounts, dates, reasons)
            cursor: Transaction cursor to write through, if inside one
            user_id: Acting owner (defaults to current context, None when automated)

        Returns:
            The stored entry
        """
        if user_id is None:
            user_id = peek_current_user_id()

        query = """
            INSERT INTO invoice_activities (id, invoice_id, user_id, action, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        params = (
            uuid4(),
            invoice_id,
            user_id,
            ActivityAction(action).value,
            Json(metadata or {}, dumps=_dumps),
            now_utc(),
        )

        if cursor is not None:
            cursor.execute(query, params)
            row = cursor.fetchone()
        else:
            row = self.postgres.execute_returning(query, params)[0]

        return InvoiceActivity.model_validate(row)

    def has_recent(
        self,
        invoice_id: UUID,
        action: ActivityAction,
        since: datetime,
        cursor: TransactionCursor | None = None,
    ) -> bool:
        """Whether an entry with this action exists at or after since."""
        query = """
            SELECT 1 AS found FROM invoice_activities
            WHERE invoice_id = %s AND action = %s AND created_at >= %s
            LIMIT 1
        """
        params = (invoice_id, ActivityAction(action).value, since)

        if cursor is not None:
            cursor.execute(query, params)
            return cursor.fetchone() is not None
        return self.postgres.execute_single(query, params) is not None

    def list_for_invoice(self, invoice_id: UUID) -> list[InvoiceActivity]:
        """All entries for an invoice, newest first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoice_activities
            WHERE invoice_id = %s
            ORDER BY created_at DESC
            """,
            (invoice_id,)
        )
        return [InvoiceActivity.model_validate(row) for row in rows]

    def get_timeline(self, invoice_id: UUID, tz_name: str = "UTC") -> list[dict[str, Any]]:
        """
        Human-facing timeline, newest first.

        Args:
            invoice_id: Invoice UUID
            tz_name: IANA timezone for formatted_date

        Returns:
            Dicts with id, action, description, metadata, created_at, formatted_date
        """
        timeline = []
        for entry in self.list_for_invoice(invoice_id):
            local = to_local(entry.created_at, tz_name)
            timeline.append({
                "id": entry.id,
                "action": entry.action.value,
                "description": entry.description,
                "metadata": entry.metadata,
                "automated": bool(entry.metadata.get("automated")),
                "created_at": entry.created_at,
                "formatted_date": local.strftime("%b %d, %Y %I:%M %p"),
            })
        return timeline
