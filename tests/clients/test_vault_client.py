"""Tests for VaultClient - HashiCorp Vault secrets management. hvac is mocked."""

from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import VaultClient, VaultError, get_database_url, get_email_config


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.com:8200")
    monkeypatch.setenv("VAULT_ROLE_ID", "role-id")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret-id")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client(vault_env):
    """Patched hvac.Client that authenticates and serves billing/ secrets."""
    secrets = {
        "billing/database": {"url": "postgresql://app@db/billing", "admin_url": "postgresql://admin@db/billing"},
        "billing/email": {"gateway_url": "https://mail", "api_key": "k", "hmac_secret": "s"},
    }

    def read_secret_version(path, raise_on_deleted_version):
        if path not in secrets:
            raise InvalidPath()
        return {"data": {"data": secrets[path]}}

    client = MagicMock()
    client.is_authenticated.return_value = True
    client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}
    client.secrets.kv.v2.read_secret_version.side_effect = read_secret_version

    with patch("clients.vault_client.hvac.Client", return_value=client):
        yield client


@pytest.fixture(autouse=True)
def reset_singleton(monkeypatch):
    monkeypatch.setattr(vault_module, "_vault_client_instance", None)
    monkeypatch.setattr(vault_module, "_secret_cache", {})


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR")

        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_SECRET_ID")

        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_valid_approle_authenticates(self, hvac_client):
        client = VaultClient()

        assert client.client.token == "s.token"
        hvac_client.auth.approle.login.assert_called_once_with(role_id="role-id", secret_id="secret-id")

    def test_failed_login_raises_vault_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = Forbidden("invalid role_id")

        with pytest.raises(VaultError, match="AppRole authentication failed"):
            VaultClient()

    def test_unauthenticated_after_login_raises(self, hvac_client):
        hvac_client.is_authenticated.return_value = False

        with pytest.raises(VaultError, match="authentication failed"):
            VaultClient()


class TestGetSecret:
    """Secret retrieval - paths automatically scoped to billing/."""

    def test_returns_field_value(self, hvac_client):
        assert VaultClient().get_secret("database", "url") == "postgresql://app@db/billing"

    def test_missing_path_raises(self, hvac_client):
        with pytest.raises(VaultError, match="billing/nonexistent"):
            VaultClient().get_secret("nonexistent", "field")

    def test_access_denied_raises(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = Forbidden("permission denied")

        with pytest.raises(VaultError, match="Access denied"):
            VaultClient().get_secret("database", "url")

    def test_missing_field_raises_keyerror(self, hvac_client):
        with pytest.raises(KeyError, match="not found"):
            VaultClient().get_secret("database", "nonexistent_field")


class TestConvenienceFunctions:
    """Module-level convenience functions."""

    def test_get_database_url_is_cached(self, hvac_client):
        assert get_database_url() == "postgresql://app@db/billing"
        assert get_database_url() == "postgresql://app@db/billing"

        assert hvac_client.secrets.kv.v2.read_secret_version.call_count == 1

    def test_get_email_config(self, hvac_client):
        assert get_email_config() == {"gateway_url": "https://mail", "api_key": "k", "hmac_secret": "s"}
