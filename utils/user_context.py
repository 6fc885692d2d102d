"""Propagate the acting owner through the call stack using contextvars.

The PostgresClient reads this on every connection checkout and sets the
RLS variable, so an owner only ever sees their own clients and invoices.
"""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get current owner ID from context.

    Raises RuntimeError if no user context is set. Owner-scoped writes
    (creating clients, invoices, payments) outside a request are a bug.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. Owner-scoped billing operations must run "
            "inside a request or a user_context() block."
        )
    return user_id


def peek_current_user_id() -> UUID | None:
    """Current owner ID, or None when running as an automated job."""
    return _current_user_id.get()


def set_current_user_id(user_id: UUID) -> None:
    """Set current owner ID in context."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Temporarily act as an owner.

    Used by the page-load sweep and by tests:

        with user_context(owner_id):
            automation.run_on_page_load(owner_id)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
