"""
Currency conversion with historical-rate lookup and caching.

Rate resolution order for (from, to, date):
1. Valkey cache, keyed by pair and date (or "latest")
2. Stored direct rate at or before the date
3. Stored inverse rate, reciprocal taken
4. External provider, result persisted for today

When all of that fails the rate degrades to 1.0 with a warning, unless
BillingConfig.rate_fallback_to_parity is off, in which case
RateUnavailableError is raised. A parity fallback is never cached.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import uuid4

import redis

from clients.postgres_client import PostgresClient
from clients.rates_client import ExchangeRateClient, ExchangeRateError
from clients.valkey_client import ValkeyClient
from core.config import BillingConfig
from core.exceptions import RateUnavailableError
from core.models import Currency, CurrencyExchangeRate
from core.money import to_decimal, to_money, to_rate
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

PARITY = Decimal("1.000000")


class CurrencyService:
    """Service for exchange rates and money conversion."""

    def __init__(
        self,
        postgres: PostgresClient,
        cache: ValkeyClient | None = None,
        rates_client: ExchangeRateClient | None = None,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.cache = cache
        self.rates_client = rates_client
        self.config = config or BillingConfig()

    @staticmethod
    def _cache_key(from_currency: Currency, to_currency: Currency, as_of: date | None) -> str:
        return f"exchange_rate:{from_currency.value}:{to_currency.value}:{as_of.isoformat() if as_of else 'latest'}"

    def _cache_get(self, key: str) -> Decimal | None:
        if self.cache is None:
            return None
        try:
            value = self.cache.get(key)
        except redis.RedisError as e:
            logger.warning(f"Rate cache read failed for {key}: {e}")
            return None
        return Decimal(value) if value is not None else None

    def _cache_set(self, key: str, rate: Decimal) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, str(rate), expire_seconds=self.config.rate_cache_ttl_hours * 3600)
        except redis.RedisError as e:
            logger.warning(f"Rate cache write failed for {key}: {e}")

    def convert(
        self,
        amount: Any,
        from_currency: Currency | str,
        to_currency: Currency | str,
        as_of: date | None = None,
    ) -> Decimal:
        """
        Convert an amount between currencies.

        Args:
            amount: Amount in from_currency
            from_currency: Source currency
            to_currency: Target currency
            as_of: Use the rate valid on this date (latest when None)

        Returns:
            The amount unchanged when currencies match, otherwise
            amount x rate rounded to cents
        """
        source = Currency.parse(from_currency)
        target = Currency.parse(to_currency)
        if source == target:
            return to_decimal(amount)

        rate = self.get_exchange_rate(source, target, as_of)
        return to_money(to_decimal(amount) * rate)

    def get_exchange_rate(
        self,
        from_currency: Currency | str,
        to_currency: Currency | str,
        as_of: date | None = None,
    ) -> Decimal:
        """
        Resolve the rate for 1 unit of from_currency in to_currency.

        Raises:
            RateUnavailableError: Only when parity fallback is disabled
        """
        source = Currency.parse(from_currency)
        target = Currency.parse(to_currency)
        if source == target:
            return PARITY

        key = self._cache_key(source, target, as_of)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        rate = self._stored_rate(source, target, as_of)
        if rate is None:
            inverse = self._stored_rate(target, source, as_of)
            if inverse is not None:
                rate = Decimal(1) / inverse

        if rate is None:
            rate = self._fetch_and_store(source, target)

        if rate is None:
            if not self.config.rate_fallback_to_parity:
                raise RateUnavailableError(source.value, target.value)
            logger.warning(
                f"No exchange rate for {source.value} -> {target.value} "
                f"(as of {as_of or 'latest'}); falling back to 1.0"
            )
            return PARITY

        self._cache_set(key, rate)
        return rate

    def _stored_rate(self, base: Currency, target: Currency, as_of: date | None) -> Decimal | None:
        value = self.postgres.execute_scalar(
            """
            SELECT rate FROM currency_exchange_rates
            WHERE base_currency = %s AND target_currency = %s AND date <= %s
            ORDER BY date DESC
            LIMIT 1
            """,
            (base.value, target.value, as_of or today_utc())
        )
        return to_rate(value) if value is not None else None

    def _fetch_and_store(self, base: Currency, target: Currency) -> Decimal | None:
        if self.rates_client is None:
            return None
        try:
            rate = to_rate(self.rates_client.fetch_rate(base.value, target.value))
        except ExchangeRateError as e:
            logger.warning(f"Rate provider failed for {base.value} -> {target.value}: {e}")
            return None

        self.store_rate(base, target, rate)
        return rate

    def store_rate(
        self,
        base_currency: Currency | str,
        target_currency: Currency | str,
        rate: Any,
        rate_date: date | None = None,
    ) -> CurrencyExchangeRate:
        """
        Insert or replace the rate for a pair on a date.

        Raises:
            ValueError: If rate is not positive
        """
        base = Currency.parse(base_currency)
        target = Currency.parse(target_currency)
        rate = to_rate(rate)
        if rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {rate}")

        now = now_utc()
        row = self.postgres.execute_returning(
            """
            INSERT INTO currency_exchange_rates (
                id, base_currency, target_currency, rate, date, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (base_currency, target_currency, date)
            DO UPDATE SET rate = EXCLUDED.rate, updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            (uuid4(), base.value, target.value, rate, rate_date or today_utc(), now, now)
        )[0]

        return CurrencyExchangeRate.model_validate(row)

    def refresh_rates(self, base_currency: Currency | str | None = None) -> int:
        """
        Pull the provider's latest rates for a base and store every supported pair.

        Returns:
            Number of rates stored

        Raises:
            ExchangeRateError: If the provider fails
            ValueError: If no provider is configured
        """
        if self.rates_client is None:
            raise ValueError("No exchange rate provider configured")

        base = Currency.parse(base_currency or self.config.default_currency)
        rates = self.rates_client.fetch_rates(base.value)

        stored = 0
        for code, rate in rates.items():
            if code == base.value or code not in Currency.__members__:
                continue
            self.store_rate(base, code, rate)
            stored += 1

        logger.info(f"Stored {stored} exchange rates for base {base.value}")
        return stored

    @staticmethod
    def format_amount(amount: Any, currency: Currency | str, with_symbol: bool = True) -> str:
        """Render an amount for humans, e.g. '€1,234.50'."""
        code = Currency.parse(currency)
        formatted = f"{to_money(amount):,.2f}"
        return f"{code.symbol}{formatted}" if with_symbol else formatted
