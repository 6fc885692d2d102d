# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_database_admin_url,
    get_valkey_url,
    get_email_config,
    get_rates_config,
)
from clients.postgres_client import PostgresClient, TransactionCursor
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.rates_client import ExchangeRateClient, ExchangeRateError
