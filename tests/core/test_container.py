"""Tests for service wiring."""

from unittest.mock import Mock, patch

import pytest

from core.config import BillingConfig
from core.container import build_services, wire_services
from core.events import InvoiceCreated, InvoicePaid, InvoiceSent, PaymentRecorded, RecurringInvoiceGenerated

NOTIFYING_EVENTS = [InvoiceCreated, InvoiceSent, InvoicePaid, PaymentRecorded, RecurringInvoiceGenerated]


class TestWireServices:

    def test_services_share_one_bus_and_config(self, fake_db):
        config = BillingConfig(invoice_number_prefix="BILL")

        services = wire_services(fake_db, config=config)

        assert services.config is config
        assert services.invoices.event_bus is services.event_bus
        assert services.payments.event_bus is services.event_bus
        assert services.recurring.invoice_service is services.invoices
        assert services.automation.overdue is services.overdue

    def test_default_config(self, fake_db):
        assert wire_services(fake_db).config == BillingConfig()

    @pytest.mark.parametrize("event_type", NOTIFYING_EVENTS)
    def test_handlers_registered_with_email_client(self, fake_db, event_type):
        services = wire_services(fake_db, email_client=Mock())

        assert services.event_bus.subscriber_count(event_type) == 1

    @pytest.mark.parametrize("event_type", NOTIFYING_EVENTS)
    def test_no_handlers_without_email_client(self, fake_db, event_type):
        services = wire_services(fake_db)

        assert services.event_bus.subscriber_count(event_type) == 0


class TestBuildServices:

    @pytest.fixture
    def vault(self):
        with patch("clients.vault_client.get_database_url", return_value="postgresql://app") as app_url, \
             patch("clients.vault_client.get_database_admin_url", return_value="postgresql://admin") as admin_url, \
             patch("clients.vault_client.get_valkey_url", return_value="redis://cache:6379"), \
             patch("clients.vault_client.get_rates_config", return_value={"base_url": "https://rates"}), \
             patch("clients.vault_client.get_email_config", return_value={
                 "gateway_url": "https://mail", "api_key": "k", "hmac_secret": "s",
             }):
            yield app_url, admin_url

    @pytest.fixture
    def client_classes(self):
        with patch("core.container.PostgresClient") as postgres, \
             patch("core.container.ValkeyClient") as valkey, \
             patch("core.container.ExchangeRateClient") as rates, \
             patch("core.container.EmailGatewayClient") as email:
            yield postgres, valkey, rates, email

    def test_application_role(self, vault, client_classes):
        postgres, valkey, rates, email = client_classes

        services = build_services()

        postgres.assert_called_once_with("postgresql://app")
        valkey.assert_called_once_with("redis://cache:6379")
        rates.assert_called_once_with(base_url="https://rates")
        email.assert_called_once_with(gateway_url="https://mail", api_key="k", hmac_secret="s")
        assert services.event_bus.subscriber_count(InvoiceSent) == 1

    def test_admin_role(self, vault, client_classes):
        postgres = client_classes[0]

        build_services(admin=True)

        postgres.assert_called_once_with("postgresql://admin")
