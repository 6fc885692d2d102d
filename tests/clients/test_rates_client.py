"""Tests for ExchangeRateClient. HTTP is mocked with the responses library."""

from decimal import Decimal

import pytest
import requests
import responses

from clients.rates_client import ExchangeRateClient, ExchangeRateError

BASE_URL = "https://rates.example.com/v6"
LATEST_USD = f"{BASE_URL}/latest/USD"


@pytest.fixture
def client():
    return ExchangeRateClient(base_url=BASE_URL + "/", api_key="rates-key")


class TestInit:

    def test_empty_base_url_rejected(self):
        with pytest.raises(ValueError, match="base_url"):
            ExchangeRateClient(base_url="")

    def test_trailing_slash_stripped(self, client):
        assert client.base_url == BASE_URL


class TestFetchRates:

    @responses.activate
    def test_parses_rates_as_decimal(self, client):
        responses.add(responses.GET, LATEST_USD, json={"base": "USD", "rates": {"EUR": 0.92, "gbp": "0.79"}})

        rates = client.fetch_rates("usd")

        assert rates == {"EUR": Decimal("0.92"), "GBP": Decimal("0.79")}
        assert responses.calls[0].request.headers["Authorization"] == "Bearer rates-key"

    @responses.activate
    def test_no_auth_header_without_key(self):
        responses.add(responses.GET, LATEST_USD, json={"rates": {}})

        ExchangeRateClient(base_url=BASE_URL).fetch_rates("USD")

        assert "Authorization" not in responses.calls[0].request.headers

    @responses.activate
    def test_drops_unusable_entries(self, client):
        responses.add(responses.GET, LATEST_USD, json={"rates": {
            "EUR": 0.92, "JPY": 0, "CAD": -1.3, "AUD": "abc", "CHF": True, "NAN": "NaN",
        }})

        assert client.fetch_rates("USD") == {"EUR": Decimal("0.92")}

    @responses.activate
    def test_http_error(self, client):
        responses.add(responses.GET, LATEST_USD, status=503)

        with pytest.raises(ExchangeRateError, match="HTTP 503"):
            client.fetch_rates("USD")

    @responses.activate
    def test_connection_error(self, client):
        responses.add(responses.GET, LATEST_USD, body=requests.exceptions.ConnectionError("refused"))

        with pytest.raises(ExchangeRateError, match="Connection failed"):
            client.fetch_rates("USD")

    @responses.activate
    def test_invalid_json(self, client):
        responses.add(responses.GET, LATEST_USD, body="<html>", status=200)

        with pytest.raises(ExchangeRateError, match="invalid JSON"):
            client.fetch_rates("USD")

    @responses.activate
    def test_missing_rates_map(self, client):
        responses.add(responses.GET, LATEST_USD, json={"error": "quota exceeded"})

        with pytest.raises(ExchangeRateError, match="no rates map"):
            client.fetch_rates("USD")


class TestFetchRate:

    @responses.activate
    def test_single_pair(self, client):
        responses.add(responses.GET, LATEST_USD, json={"rates": {"EUR": 0.92}})

        assert client.fetch_rate("USD", "eur") == Decimal("0.92")

    @responses.activate
    def test_unquoted_pair(self, client):
        responses.add(responses.GET, LATEST_USD, json={"rates": {"EUR": 0.92}})

        with pytest.raises(ExchangeRateError, match="no rate for USD -> JPY"):
            client.fetch_rate("USD", "JPY")
