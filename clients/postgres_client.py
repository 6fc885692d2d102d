"""
PostgreSQL client with connection pooling and RLS owner isolation.

Uses psycopg2 with ThreadedConnectionPool. Owner isolation is enforced via
PostgreSQL Row Level Security: the owner ID from the contextvar is set as
app.current_user_id on every connection checkout.

Scheduled jobs that sweep every owner's invoices connect with the admin URL
(a role with BYPASSRLS) and run without user context.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import _current_user_id

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class TransactionCursor:
    """
    Cursor handed out by PostgresClient.transaction().

    Same parameter handling as the client methods; rows come back as plain
    dicts. Everything executed through it commits or rolls back together.
    """

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query: str, params: Tuple | Dict | None = None) -> None:
        self._cursor.execute(query, _convert_params(params))

    def fetchone(self) -> Dict[str, Any] | None:
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._cursor.fetchall()]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        with user_context(owner_id):
            invoices = db.execute("SELECT * FROM invoices")  # Owner's rows only

        # Check-lock-recheck on one row
        with db.transaction() as cur:
            cur.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,))
            row = cur.fetchone()
            ...
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=2,
                    maxconn=20,
                    dsn=self._database_url,
                    connect_timeout=30,
                )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Get connection with RLS context from contextvar."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")

            user_id = _current_user_id.get()

            with conn.cursor() as cur:
                if user_id is not None:
                    cur.execute("SET app.current_user_id = %s", (str(user_id),))
                else:
                    # RLS policies cast to uuid, which fails on '' = no rows
                    cur.execute("SET app.current_user_id = ''")

            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[TransactionCursor]:
        """
        Run several statements atomically on one connection.

        Commits when the block exits normally. Rolls back and re-raises on
        any exception, so no partial writes survive a failure.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield TransactionCursor(cur)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = _convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                if cur.description:
                    return [dict(row) for row in cur.fetchall()]
                conn.commit()
                return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = _convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
                return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        params = _convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                conn.commit()
                return [dict(row) for row in cur.fetchall()]

    def iter_chunks(
        self,
        query: str,
        params: Tuple = (),
        chunk_size: int = 100,
        key_column: str = "id",
    ) -> Iterator[List[Dict[str, Any]]]:
        """
        Page through a SELECT with keyset pagination.

        The query must end in a WHERE clause; the key predicate, ordering and
        limit are appended. Each yielded chunk holds at most chunk_size rows.

        Args:
            query: SELECT ... WHERE ... without ORDER BY or LIMIT
            params: Parameters for the query's own placeholders
            chunk_size: Rows per page
            key_column: Unique, orderable column to page on (may be table-qualified)
        """
        row_key = key_column.rsplit(".", 1)[-1]
        last_key = None
        while True:
            if last_key is None:
                page_query = f"{query} ORDER BY {key_column} LIMIT %s"
                page_params = tuple(params) + (chunk_size,)
            else:
                page_query = f"{query} AND {key_column} > %s ORDER BY {key_column} LIMIT %s"
                page_params = tuple(params) + (last_key, chunk_size)

            rows = self.execute(page_query, page_params)
            if not rows:
                return

            yield rows

            if len(rows) < chunk_size:
                return
            last_key = rows[-1][row_key]

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
