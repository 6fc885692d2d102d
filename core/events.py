"""
Domain events for billing.

Immutable event objects that represent committed state changes. Services
publish after their transaction commits; notification handlers react
without the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (created, sent, paid)
- PaymentEvent: Payment recorded
- RecurringEvent: Invoice generated from a recurring template

Events carry the full domain objects so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """An invoice was created already in SENT status and should reach the client."""
    invoice: Any = None  # Invoice

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """A draft invoice was sent to the client."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice reached PAID, by full payment or explicit mark-paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentRecorded(BillingEvent):
    """A payment was applied to an invoice. The invoice is its post-payment state."""
    payment: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice)


# =============================================================================
# RECURRING EVENTS
# =============================================================================


@dataclass(frozen=True)
class RecurringInvoiceGenerated(BillingEvent):
    """The scheduler produced an invoice from a template."""
    invoice: Any = None
    recurring_invoice: Any = None

    @classmethod
    def create(cls, invoice: Any, recurring_invoice: Any) -> "RecurringInvoiceGenerated":
        return cls(invoice=invoice, recurring_invoice=recurring_invoice)
