"""
Client service for CRUD operations.

Handles client lifecycle: create, read, update, soft delete.
All operations are automatically scoped to the current owner via RLS.
"""

import logging
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.models import Client, ClientCreate, ClientUpdate
from utils.user_context import get_current_user_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Valid columns that can be updated
_UPDATABLE_COLUMNS = {
    "name", "email", "phone", "company", "address",
    "tax_id", "tax_country", "tax_state", "tax_rate",
    "tax_exempt", "tax_exemption_reason", "currency",
}


class ClientService:
    """Service for client operations."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def create(self, data: ClientCreate) -> Client:
        """
        Create a new client.

        Args:
            data: Client creation data

        Returns:
            Created client
        """
        user_id = get_current_user_id()
        now = now_utc()

        row = self.postgres.execute_returning(
            """
            INSERT INTO clients (
                id, user_id, name, email, phone, company, address,
                tax_id, tax_country, tax_state, tax_rate,
                tax_exempt, tax_exemption_reason, currency,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), user_id, data.name, str(data.email), data.phone, data.company, data.address,
                data.tax_id, data.tax_country, data.tax_state, data.tax_rate,
                data.tax_exempt, data.tax_exemption_reason,
                data.currency.value if data.currency else None,
                now, now
            )
        )[0]

        client = Client.model_validate(row)
        logger.info(f"Client {client.id} created")
        return client

    def get_by_id(self, client_id: UUID) -> Client | None:
        """
        Get client by ID.

        Returns:
            Client if found and not deleted, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM clients WHERE id = %s AND deleted_at IS NULL",
            (client_id,)
        )

        if row is None:
            return None

        return Client.model_validate(row)

    def update(self, client_id: UUID, data: ClientUpdate) -> Client:
        """
        Update client fields.

        Changing the tax rate or currency never touches existing invoices;
        those carry their own frozen copies.

        Args:
            client_id: Client UUID
            data: Fields to update (only fields that were set are changed)

        Returns:
            Updated client

        Raises:
            ValueError: If client not found
        """
        current = self.get_by_id(client_id)
        if current is None:
            raise ValueError(f"Client {client_id} not found")

        updates = data.model_dump(mode="json", exclude_unset=True)
        valid_updates = {k: v for k, v in updates.items() if k in _UPDATABLE_COLUMNS}
        if not valid_updates:
            return current

        set_parts = [f"{field} = %s" for field in valid_updates]
        params = list(valid_updates.values())

        set_parts.append("updated_at = %s")
        params.append(now_utc())
        params.append(client_id)

        row = self.postgres.execute_returning(
            f"""
            UPDATE clients
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            tuple(params)
        )[0]

        return Client.model_validate(row)

    def delete(self, client_id: UUID) -> bool:
        """
        Soft delete a client.

        Returns:
            True if deleted, False if not found

        Raises:
            ValueError: If the client still has sent or overdue invoices
        """
        current = self.get_by_id(client_id)
        if current is None:
            return False

        open_count = self.postgres.execute_scalar(
            """
            SELECT COUNT(*) FROM invoices
            WHERE client_id = %s AND status IN ('sent', 'overdue') AND deleted_at IS NULL
            """,
            (client_id,)
        )
        if open_count:
            raise ValueError(
                f"Client {client_id} has {open_count} unsettled invoice(s) and cannot be deleted"
            )

        now = now_utc()
        self.postgres.execute_returning(
            """
            UPDATE clients
            SET deleted_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING id
            """,
            (now, now, client_id)
        )
        logger.info(f"Client {client_id} deleted")
        return True

    def list_all(self, limit: int = 50, offset: int = 0) -> list[Client]:
        """List clients ordered by name."""
        rows = self.postgres.execute(
            """
            SELECT * FROM clients
            WHERE deleted_at IS NULL
            ORDER BY name ASC
            LIMIT %s OFFSET %s
            """,
            (limit, offset)
        )

        return [Client.model_validate(row) for row in rows]
