"""
Valkey (Redis-compatible) client for sessions, counters and IP blocks.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
Reconnection is bounded: see connect_with_backoff() and ValkeySupervisor.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Callable, Iterator

import redis
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set("key", "value", expire_seconds=300)
        value = client.get("key")  # Returns None if missing
    """

    def __init__(self, url: str, connect: Callable[[], redis.Redis] | None = None):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            connect: Optional factory returning a redis client. Defaults to
                redis.from_url(url); tests pass a fakeredis factory.

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._url = url
        self._connect = connect or (lambda: redis.from_url(url, decode_responses=True))
        self._client = self._connect()
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def reconnect(self) -> None:
        """Replace the underlying connection. Raises if the new one can't ping."""
        client = self._connect()
        client.ping()
        old, self._client = self._client, client
        try:
            old.close()
        except redis.RedisError as e:
            logger.debug(f"Closing stale Valkey connection failed: {e}")
        logger.info("ValkeyClient reconnected")

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        Raises on connection failure.
        """
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """
        Set key to value, optionally with expiration.

        Args:
            key: Key to set
            value: Value to store
            expire_seconds: TTL in seconds (None for no expiration)
        """
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        return self._client.delete(key) > 0

    def exists(self, key: str) -> bool:
        """Check if key exists."""
        return self._client.exists(key) > 0

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def incr(self, key: str) -> int:
        """
        Increment key by 1 (atomic).

        Creates key with value 1 if it doesn't exist.
        Returns the new value.
        """
        return self._client.incr(key)

    def expire(self, key: str, seconds: int) -> bool:
        """Set TTL on an existing key. Returns False if the key is missing."""
        return bool(self._client.expire(key, seconds))

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        """
        Set key to JSON-serialized value.

        Args:
            key: Key to set
            value: Dict or list to serialize
            expire_seconds: TTL in seconds (None for no expiration)
        """
        json_str = json.dumps(value)
        self.set(key, json_str, expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for store (re)connection."""

    max_attempts: int = Field(default=5, ge=1, le=20)
    initial_delay_seconds: float = Field(default=0.5, gt=0)
    backoff: float = Field(default=2.0, ge=1)
    max_delay_seconds: float = Field(default=8.0, gt=0)

    def delays(self) -> Iterator[float]:
        """Delays to wait after each failed attempt except the last."""
        delay = self.initial_delay_seconds
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay_seconds)
            delay *= self.backoff


def connect_with_backoff(
    url: str,
    policy: RetryPolicy | None = None,
    connect: Callable[[], redis.Redis] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ValkeyClient:
    """Connect to Valkey, retrying with exponential backoff.

    Raises:
        redis.ConnectionError: After policy.max_attempts failed attempts.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()
    attempt = 1

    while True:
        try:
            return ValkeyClient(url, connect=connect)
        except redis.ConnectionError as e:
            delay = next(delays, None)
            if delay is None:
                logger.error(f"Valkey unreachable after {attempt} attempts: {e}")
                raise
            logger.warning(f"Valkey connect attempt {attempt} failed, retrying in {delay}s: {e}")
            sleep(delay)
            attempt += 1


class ConnectionState(Enum):
    """Store connection states tracked by ValkeySupervisor."""

    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ValkeySupervisor:
    """Periodic health check that reconnects the store with bounded backoff.

    CONNECTED -> RECONNECTING on a failed ping. RECONNECTING -> CONNECTED on a
    successful reconnect, or -> FAILED once the retry policy is exhausted.
    FAILED is retried from scratch on the next check.
    """

    def __init__(
        self,
        valkey: ValkeyClient,
        interval_seconds: float = 15.0,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._valkey = valkey
        self._interval = interval_seconds
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self.state = ConnectionState.CONNECTED

    def check(self) -> ConnectionState:
        """Ping the store; on failure run one bounded reconnect cycle."""
        try:
            self._valkey.ping()
            self.state = ConnectionState.CONNECTED
            return self.state
        except redis.RedisError as e:
            logger.error(f"Valkey health check failed: {e}")

        self.state = ConnectionState.RECONNECTING
        delays = self._policy.delays()
        for attempt in range(1, self._policy.max_attempts + 1):
            try:
                self._valkey.reconnect()
                self.state = ConnectionState.CONNECTED
                return self.state
            except redis.RedisError as e:
                delay = next(delays, None)
                if delay is None:
                    break
                logger.warning(f"Valkey reconnect attempt {attempt} failed, retrying in {delay}s: {e}")
                self._sleep(delay)

        logger.error(f"Valkey reconnect gave up after {self._policy.max_attempts} attempts")
        self.state = ConnectionState.FAILED
        return self.state

    async def run(self) -> None:
        """Run checks forever. Intended to be started as a lifespan task."""
        while True:
            await asyncio.sleep(self._interval)
            await asyncio.to_thread(self.check)
