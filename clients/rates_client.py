"""
HTTP client for the external exchange-rate provider.

GET {base_url}/latest/{BASE} returns {"base": "USD", "rates": {"EUR": 0.92, ...}}.
Anything other than a 2xx response with a well-formed rates map is
"rate unavailable" and raises ExchangeRateError; callers decide how to degrade.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict

import requests

logger = logging.getLogger(__name__)


class ExchangeRateError(Exception):
    """Provider could not supply rates."""


class ExchangeRateClient:
    """Fetch latest rates for a base currency."""

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 10):
        """
        Args:
            base_url: Provider root, e.g. https://api.exchangerate.example/v6
            api_key: Sent as a bearer token when given
            timeout: Request timeout in seconds

        Raises:
            ValueError: If base_url is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def fetch_rates(self, base_currency: str) -> Dict[str, Decimal]:
        """
        Latest rates for one base currency.

        Args:
            base_currency: ISO code, e.g. "USD"

        Returns:
            Mapping of target code to Decimal rate. Non-positive and
            non-numeric entries are dropped.

        Raises:
            ExchangeRateError: On connection failure, non-2xx status or malformed body
        """
        url = f"{self.base_url}/latest/{base_currency.upper()}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Exchange rate provider unreachable: {e}")
            raise ExchangeRateError(f"Connection failed: {e}")

        if not response.ok:
            logger.warning(f"Exchange rate provider returned {response.status_code} for {base_currency}")
            raise ExchangeRateError(f"Provider returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise ExchangeRateError("Provider returned invalid JSON")

        raw_rates = body.get("rates") if isinstance(body, dict) else None
        if not isinstance(raw_rates, dict):
            raise ExchangeRateError("Provider response has no rates map")

        rates: Dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            if isinstance(value, bool):
                continue
            try:
                rate = Decimal(str(value))
            except (InvalidOperation, ValueError):
                continue
            if rate.is_finite() and rate > 0:
                rates[str(code).upper()] = rate

        return rates

    def fetch_rate(self, base_currency: str, target_currency: str) -> Decimal:
        """
        Single pair lookup.

        Raises:
            ExchangeRateError: If the provider fails or does not quote the pair
        """
        rates = self.fetch_rates(base_currency)
        try:
            return rates[target_currency.upper()]
        except KeyError:
            raise ExchangeRateError(f"Provider has no rate for {base_currency} -> {target_currency}")
