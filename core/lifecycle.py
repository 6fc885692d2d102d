"""
Invoice lifecycle state machine.

The transition table is the single source of truth for which status
changes are legal. Services call assert_transition() after locking the
invoice row and before writing the new status.

    draft   -> sent (send), cancelled
    sent    -> paid (full payment or mark-paid), overdue (sweep), cancelled
    overdue -> paid, cancelled
    paid, cancelled: terminal
"""

from core.exceptions import InvalidTransitionError
from core.models.invoice import InvoiceStatus

TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
}


def can_transition(current: InvoiceStatus | str, target: InvoiceStatus | str) -> bool:
    """Whether current -> target is a legal invoice status change."""
    return InvoiceStatus(target) in TRANSITIONS[InvoiceStatus(current)]


def assert_transition(invoice_id, current: InvoiceStatus | str, target: InvoiceStatus | str) -> None:
    """
    Raise unless current -> target is legal.

    Raises:
        InvalidTransitionError: If the transition is not in the table
    """
    if not can_transition(current, target):
        raise InvalidTransitionError("Invoice", invoice_id, InvoiceStatus(current), InvoiceStatus(target))


def allowed_targets(current: InvoiceStatus | str) -> frozenset[InvoiceStatus]:
    return TRANSITIONS[InvoiceStatus(current)]
