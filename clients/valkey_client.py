"""
Valkey (Redis-compatible) client for the exchange-rate cache.

Thin wrapper around redis-py. Every key is namespaced so several
deployments can share one Valkey instance. Connection URL comes from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set("exchange_rate:USD:EUR:latest", "0.920000", expire_seconds=86400)
        value = client.get("exchange_rate:USD:EUR:latest")  # None if missing
    """

    def __init__(self, url: str, namespace: str = "billing"):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix prepended to every key

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._namespace = namespace
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        Raises on connection failure.
        """
        return self._client.get(self._key(key))

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """
        Set key to value, optionally with expiration.

        Args:
            key: Key to set
            value: Value to store
            expire_seconds: TTL in seconds (None for no expiration)
        """
        if expire_seconds is not None:
            self._client.setex(self._key(key), expire_seconds, value)
        else:
            self._client.set(self._key(key), value)

    def delete(self, key: str) -> bool:
        """Delete key. True if it existed."""
        return self._client.delete(self._key(key)) > 0

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
