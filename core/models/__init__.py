"""Core domain models."""

from core.models.currency import Currency, CurrencyExchangeRate
from core.models.client import Client, ClientCreate, ClientUpdate
from core.models.invoice_item import InvoiceItem, InvoiceItemCreate
from core.models.invoice import Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus
from core.models.payment import Payment, PaymentCreate, PaymentMethod
from core.models.recurring_invoice import (
    RecurringInvoice,
    RecurringInvoiceCreate,
    RecurringInvoiceUpdate,
    RecurringFrequency,
    RecurringStatus,
)
from core.models.activity import InvoiceActivity, ActivityAction
from core.models.sweep import SweepResult, SweepItem, SweepOutcome, PageLoadResult
from core.models.preferences import NotificationPreferences, NotificationType

__all__ = [
    # Currency
    "Currency", "CurrencyExchangeRate",
    # Client
    "Client", "ClientCreate", "ClientUpdate",
    # InvoiceItem
    "InvoiceItem", "InvoiceItemCreate",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus",
    # Payment
    "Payment", "PaymentCreate", "PaymentMethod",
    # RecurringInvoice
    "RecurringInvoice", "RecurringInvoiceCreate", "RecurringInvoiceUpdate",
    "RecurringFrequency", "RecurringStatus",
    # Activity
    "InvoiceActivity", "ActivityAction",
    # Sweep
    "SweepResult", "SweepItem", "SweepOutcome", "PageLoadResult",
    # Preferences
    "NotificationPreferences", "NotificationType",
]
