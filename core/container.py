"""
Service wiring.

One place that knows how the clients, services, event bus and notification
handlers fit together. The CLI and the web app call build_services();
tests call wire_services() with their own clients.
"""

import logging
from dataclasses import dataclass

from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.rates_client import ExchangeRateClient
from clients.valkey_client import ValkeyClient
from core.activity import ActivityLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoicePaid, InvoiceSent, PaymentRecorded, RecurringInvoiceGenerated
from core.handlers.invoice_notification_handler import handle_invoice_issued
from core.handlers.invoice_payment_handler import handle_invoice_paid, handle_payment_recorded
from core.handlers.recurring_invoice_handler import handle_recurring_generated
from core.services.automation_service import AutomationService
from core.services.client_service import ClientService
from core.services.currency_service import CurrencyService
from core.services.invoice_service import InvoiceService
from core.services.overdue_service import OverdueInvoiceService
from core.services.payment_service import PaymentService
from core.services.preference_service import PreferenceService
from core.services.recurring_invoice_service import RecurringInvoiceService
from core.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything an entry point needs, built once."""

    config: BillingConfig
    postgres: PostgresClient
    event_bus: EventBus
    activity: ActivityLogger
    clients: ClientService
    currency: CurrencyService
    invoices: InvoiceService
    payments: PaymentService
    recurring: RecurringInvoiceService
    overdue: OverdueInvoiceService
    reminders: ReminderService
    automation: AutomationService
    preferences: PreferenceService


def register_notification_handlers(
    event_bus: EventBus,
    email_client: EmailGatewayClient,
    client_service: ClientService,
    preference_service: PreferenceService,
    payment_service: PaymentService,
) -> None:
    """Subscribe the email handlers to every event that notifies a client."""
    issued = handle_invoice_issued(email_client, client_service, preference_service)
    event_bus.subscribe(InvoiceCreated, issued)
    event_bus.subscribe(InvoiceSent, issued)
    event_bus.subscribe(InvoicePaid, handle_invoice_paid(email_client, client_service, preference_service))
    event_bus.subscribe(
        PaymentRecorded,
        handle_payment_recorded(email_client, client_service, preference_service, payment_service),
    )
    event_bus.subscribe(
        RecurringInvoiceGenerated,
        handle_recurring_generated(email_client, client_service, preference_service),
    )


def wire_services(
    postgres: PostgresClient,
    config: BillingConfig | None = None,
    cache: ValkeyClient | None = None,
    rates_client: ExchangeRateClient | None = None,
    email_client: EmailGatewayClient | None = None,
) -> Services:
    """
    Build all services around the given clients.

    Notification handlers are registered only when an email client is given.
    """
    config = config or BillingConfig()
    event_bus = EventBus()
    activity = ActivityLogger(postgres)

    clients = ClientService(postgres)
    invoices = InvoiceService(postgres, activity, event_bus, config)
    payments = PaymentService(postgres, activity, event_bus)
    recurring = RecurringInvoiceService(postgres, activity, event_bus, invoices, config)
    overdue = OverdueInvoiceService(postgres, activity, config)
    reminders = ReminderService(postgres, activity, config)
    preferences = PreferenceService(postgres)

    if email_client is not None:
        register_notification_handlers(event_bus, email_client, clients, preferences, payments)

    return Services(
        config=config,
        postgres=postgres,
        event_bus=event_bus,
        activity=activity,
        clients=clients,
        currency=CurrencyService(postgres, cache, rates_client, config),
        invoices=invoices,
        payments=payments,
        recurring=recurring,
        overdue=overdue,
        reminders=reminders,
        automation=AutomationService(overdue, reminders, recurring, config),
        preferences=preferences,
    )


def build_services(config: BillingConfig | None = None, admin: bool = False) -> Services:
    """
    Build services from the secrets in Vault.

    Args:
        config: Billing settings (defaults when None)
        admin: Connect with the BYPASSRLS role; scheduled jobs sweep every owner

    Raises:
        VaultError: If a required secret is missing
    """
    from clients.vault_client import (
        get_database_admin_url,
        get_database_url,
        get_email_config,
        get_rates_config,
        get_valkey_url,
    )

    postgres = PostgresClient(get_database_admin_url() if admin else get_database_url())
    cache = ValkeyClient(get_valkey_url())
    rates_client = ExchangeRateClient(**get_rates_config())
    email_client = EmailGatewayClient(**get_email_config())

    logger.info(f"Services built ({'admin' if admin else 'application'} database role)")
    return wire_services(postgres, config, cache, rates_client, email_client)
