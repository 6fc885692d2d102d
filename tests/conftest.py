"""Shared test fixtures for the billing test suite."""

import json
import os
import re
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv
from psycopg2.extras import Json

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.timezone import now_utc, today_utc
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Primary test user - use for single-user tests
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "testuser@test.local"

# Secondary test user - use for isolation tests
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")
TEST_USER_B_EMAIL = "testuser-b@test.local"


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """The secondary test user's ID (for isolation tests)."""
    return TEST_USER_B_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Run the test as the primary test user."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# IN-MEMORY POSTGRES
# =============================================================================


def _normalize(sql: str) -> str:
    return " ".join(sql.split())


_INSERT = re.compile(r"INSERT INTO (\w+) \((.*?)\) VALUES")


def _decode(value):
    if isinstance(value, Json):
        return json.loads(value.dumps(value.adapted))
    return value


class ScriptedCursor:
    """Transaction cursor over FakePostgres. fetchone/fetchall read the last response."""

    def __init__(self, db: "FakePostgres"):
        self._db = db
        self._rows: list[dict] = []

    def execute(self, query, params=None):
        self._rows = self._db._respond(query, params)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    @property
    def rowcount(self) -> int:
        return len(self._rows)


class FakePostgres:
    """
    Stand-in for PostgresClient.

    Statements are answered by handlers registered with on(fragment, rows):
    the most recently registered handler whose fragment appears in the
    (whitespace-normalized) SQL wins. rows is a list of dicts or a callable
    taking the params. Unmatched statements return no rows.

    Every INSERT is echoed back as a row built from its column list and
    kept in tables[name]. Inserts made inside transaction() become visible
    in tables only on commit and are dropped on rollback.
    """

    def __init__(self):
        self._handlers: list[tuple[str, object]] = []
        self.statements: list[tuple[str, tuple]] = []
        self.tables: dict[str, list[dict]] = {}
        self.commits = 0
        self.rollbacks = 0
        self._pending: list[tuple[str, dict]] | None = None

        self.on("INSERT INTO", self._echo_insert)
        self.on("SELECT 1 AS found FROM invoice_activities", self._find_activity)

    def on(self, fragment: str, response) -> None:
        self._handlers.insert(0, (_normalize(fragment), response))

    def fail_on(self, fragment: str, error: Exception | None = None) -> None:
        def raiser(params):
            raise error or RuntimeError(f"Statement failed: {fragment}")
        self.on(fragment, raiser)

    def executed(self, fragment: str) -> list[tuple]:
        """Params of every statement containing fragment."""
        fragment = _normalize(fragment)
        return [params for sql, params in self.statements if fragment in sql]

    def rows(self, table: str) -> list[dict]:
        """Committed rows plus rows pending in the open transaction."""
        rows = list(self.tables.get(table, []))
        if self._pending is not None:
            rows += [row for name, row in self._pending if name == table]
        return rows

    @property
    def activities(self) -> list[dict]:
        return self.rows("invoice_activities")

    def insert(self, table: str, row: dict) -> dict:
        """Seed a committed row."""
        self.tables.setdefault(table, []).append(row)
        return row

    def serve_table(self, table: str) -> None:
        """
        Answer "SELECT * FROM table WHERE id = %s" and "UPDATE table SET col = %s, ..."
        from tables[table]. Updates apply in place and are not undone on rollback.
        """

        def find(params):
            return [
                row for row in self.rows(table)
                if row["id"] == params[0] and row.get("deleted_at") is None
            ]

        def update(params):
            sql, _ = self.statements[-1]
            columns = re.findall(r"(\w+) = %s", re.search(r" SET (.*?) WHERE ", sql).group(1))
            for row in self.rows(table):
                if row["id"] == params[-1]:
                    row.update(zip(columns, params))
                    return [row] if "RETURNING" in sql else []
            return []

        self.on(f"SELECT * FROM {table} WHERE id = %s", find)
        self.on(f"UPDATE {table} SET", update)

    def _respond(self, query, params):
        sql = _normalize(query)
        self.statements.append((sql, params))
        for fragment, response in self._handlers:
            if fragment in sql:
                rows = response(params) if callable(response) else response
                return [dict(row) for row in (rows or [])]
        return []

    def _echo_insert(self, params):
        sql, _ = self.statements[-1]
        match = _INSERT.search(sql)
        if match is None:
            return []
        table = match.group(1)
        columns = [c.strip() for c in match.group(2).split(",")]
        row = {column: _decode(value) for column, value in zip(columns, params)}
        if self._pending is not None:
            self._pending.append((table, row))
        else:
            self.tables.setdefault(table, []).append(row)
        return [row] if "RETURNING" in sql else []

    def _find_activity(self, params):
        invoice_id, action, since = params
        for row in self.activities:
            if row["invoice_id"] == invoice_id and row["action"] == action and row["created_at"] >= since:
                return [{"found": 1}]
        return []

    # PostgresClient interface

    def execute(self, query, params=None):
        return self._respond(query, params)

    def execute_single(self, query, params=None):
        rows = self._respond(query, params)
        return rows[0] if rows else None

    def execute_scalar(self, query, params=None):
        rows = self._respond(query, params)
        return next(iter(rows[0].values())) if rows else None

    def execute_returning(self, query, params=None):
        return self._respond(query, params)

    def iter_chunks(self, query, params=(), chunk_size=100, key_column="id"):
        rows = self._respond(query, tuple(params))
        for start in range(0, len(rows), chunk_size):
            yield rows[start:start + chunk_size]

    @contextmanager
    def transaction(self):
        outer = self._pending
        self._pending = []
        try:
            yield ScriptedCursor(self)
        except Exception:
            self.rollbacks += 1
            self._pending = outer
            raise
        for table, row in self._pending:
            self.tables.setdefault(table, []).append(row)
        self._pending = outer
        self.commits += 1


@pytest.fixture
def fake_db() -> FakePostgres:
    return FakePostgres()


@pytest.fixture
def services(fake_db):
    """All services wired around the in-memory database, no email."""
    from core.container import wire_services
    return wire_services(fake_db)


@pytest.fixture
def published(services):
    """Every event published on the services' bus, in order."""
    events = []
    for name in ("InvoiceCreated", "InvoiceSent", "InvoicePaid", "PaymentRecorded", "RecurringInvoiceGenerated"):
        services.event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def store(fake_db) -> FakePostgres:
    """
    Serve the lookups whole billing flows need from fake_db.tables:
    clients, invoices, templates, items, payments and invoice numbering.
    """
    for table in ("clients", "invoices", "recurring_invoices"):
        fake_db.serve_table(table)

    def client_column(column):
        def lookup(params):
            return [{column: row[column]} for row in fake_db.rows("clients") if row["id"] == params[0]]
        return lookup

    def items_of(params):
        return [row for row in fake_db.rows("invoice_items") if row["invoice_id"] == params[0]]

    def delete_items(params):
        fake_db.tables["invoice_items"] = [
            row for row in fake_db.tables.get("invoice_items", []) if row["invoice_id"] != params[0]
        ]
        return []

    def last_number(params):
        user_id, pattern = params
        numbers = [
            row["invoice_number"] for row in fake_db.rows("invoices")
            if row["user_id"] == user_id and row["invoice_number"].startswith(pattern.rstrip("%"))
        ]
        if not numbers:
            return []
        return [{"invoice_number": max(numbers, key=lambda n: (len(n), n))}]

    def paid(params):
        amounts = [row["amount"] for row in fake_db.rows("payments") if row["invoice_id"] == params[0]]
        return [{"paid": sum(amounts, Decimal("0"))}]

    def invoice_total(params):
        return [{"total": row["total"]} for row in fake_db.rows("invoices") if row["id"] == params[0]]

    fake_db.on("SELECT id FROM clients WHERE id = %s", client_column("id"))
    fake_db.on("SELECT currency FROM clients WHERE id = %s", client_column("currency"))
    fake_db.on("SELECT email FROM clients WHERE id = %s", client_column("email"))
    fake_db.on("FROM invoice_items WHERE invoice_id = %s", items_of)
    fake_db.on("SELECT COUNT(*) AS count FROM invoice_items", lambda params: [{"count": len(items_of(params))}])
    fake_db.on("DELETE FROM invoice_items", delete_items)
    fake_db.on("SELECT invoice_number FROM invoices WHERE user_id = %s", last_number)
    fake_db.on("COALESCE(SUM(amount), 0)", paid)
    fake_db.on("SELECT total FROM invoices WHERE id = %s", invoice_total)
    return fake_db


# =============================================================================
# ROW FACTORIES
# =============================================================================


@pytest.fixture
def client_row():
    """Factory for a stored client row."""

    def make(**overrides) -> dict:
        now = now_utc()
        row = {
            "id": uuid4(),
            "user_id": TEST_USER_ID,
            "name": "Acme GmbH",
            "email": "billing@acme.com",
            "phone": None,
            "company": "Acme",
            "address": None,
            "tax_id": None,
            "tax_country": None,
            "tax_state": None,
            "tax_rate": Decimal("0.1000"),
            "tax_exempt": False,
            "tax_exemption_reason": None,
            "currency": "EUR",
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        row.update(overrides)
        return row

    return make


@pytest.fixture
def invoice_row():
    """Factory for a stored invoice row (sent, 100.00 USD, due in 30 days)."""

    def make(**overrides) -> dict:
        now = now_utc()
        today = today_utc()
        row = {
            "id": uuid4(),
            "user_id": TEST_USER_ID,
            "client_id": uuid4(),
            "recurring_invoice_id": None,
            "invoice_number": f"INV-{today.year}-0001",
            "status": "sent",
            "subtotal": Decimal("100.00"),
            "tax": Decimal("0.00"),
            "discount": Decimal("0.00"),
            "total": Decimal("100.00"),
            "currency": "USD",
            "invoice_tax_rate": Decimal("0.0000"),
            "tax_exempt_at_time": False,
            "issue_date": today - timedelta(days=1),
            "due_date": today + timedelta(days=30),
            "sent_at": now,
            "paid_at": None,
            "cancelled_at": None,
            "stripe_session_id": None,
            "stripe_payment_intent_id": None,
            "notes": None,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        row.update(overrides)
        return row

    return make


@pytest.fixture
def recurring_row():
    """Factory for a stored recurring template row (active, monthly, due today)."""

    def make(**overrides) -> dict:
        now = now_utc()
        today = today_utc()
        row = {
            "id": uuid4(),
            "user_id": TEST_USER_ID,
            "client_id": uuid4(),
            "title": "Monthly retainer",
            "amount": Decimal("500.00"),
            "frequency": "monthly",
            "status": "active",
            "start_date": today - timedelta(days=31),
            "next_run_date": today,
            "last_run_date": None,
            "notes": None,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        row.update(overrides)
        return row

    return make


# =============================================================================
# DATABASE FIXTURES (integration, need Vault)
# =============================================================================


requires_vault = pytest.mark.skipif(
    not os.environ.get("VAULT_ADDR"),
    reason="VAULT_ADDR not set; database-backed tests need Vault",
)


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient (application user, RLS enforced)."""
    if not os.environ.get("VAULT_ADDR"):
        pytest.skip("VAULT_ADDR not set")

    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    client = PostgresClient(get_database_url())
    yield client
    client.close()


@pytest.fixture(scope="session")
def db_admin():
    """Session-scoped admin PostgresClient (bypasses RLS, for test setup/teardown)."""
    if not os.environ.get("VAULT_ADDR"):
        pytest.skip("VAULT_ADDR not set")

    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_admin_url

    client = PostgresClient(get_database_admin_url())
    yield client
    client.close()


@pytest.fixture
def clean_db(db_admin):
    """Empty billing tables and make sure the test users exist."""
    db_admin.execute("""
        TRUNCATE
            invoice_activities, payments, invoice_items, invoices,
            recurring_invoices, clients, currency_exchange_rates,
            user_notification_preferences
        CASCADE
    """)
    db_admin.execute("""
        INSERT INTO users (id, email, created_at)
        VALUES (%s, %s, now()), (%s, %s, now())
        ON CONFLICT (id) DO UPDATE SET email = EXCLUDED.email
    """, (TEST_USER_ID, TEST_USER_EMAIL, TEST_USER_B_ID, TEST_USER_B_EMAIL))
    yield db_admin

