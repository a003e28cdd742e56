"""Key-value store abstraction for shared rate limit state.

Provides a pluggable store with an in-memory implementation (per process,
plain get/put with TTL) and a Redis implementation that additionally
offers an atomic windowed increment.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import asyncio
import time
from typing import Any, Callable

import redis.asyncio as aioredis


# Atomic fixed-window increment. The key's expiry marks the end of the
# window, so a missing key means a fresh window starting at count 1.
WINDOW_INCREMENT_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
        ttl = tonumber(ARGV[1])
    end
    return {count, ttl}
"""


@dataclass
class _StoreEntry:
    """Internal store entry with TTL tracking."""

    value: bytes
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class KeyValueStore(ABC):
    """Abstract base class for key-value stores.

    Stores that can increment a windowed counter atomically set
    ``supports_atomic_increment`` and implement ``increment_window``.
    """

    supports_atomic_increment: bool = False

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Retrieve a value, or None if missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store a value with a time-to-live in seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value."""
        pass

    async def increment_window(self, key: str, window_ms: int) -> tuple[int, int]:
        """Atomically increment a counter that lives for one window.

        Args:
            key: Counter key.
            window_ms: Window length; applied as expiry on the first increment.

        Returns:
            Tuple of (count after increment, milliseconds until the window ends).

        Raises:
            NotImplementedError: The store has no atomic increment. Callers
                check ``supports_atomic_increment`` before calling.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support atomic increments"
        )

    async def ping(self) -> bool:
        """Check that the store is reachable."""
        return True

    async def close(self) -> None:
        """Release any connections held by the store."""
        return None


class InMemoryStore(KeyValueStore):
    """In-memory store with TTL support.

    Mirrors an eventually consistent KV service: reads and writes are
    separate operations and no atomic increment is offered.

    Note: data is per process and lost when the application restarts.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, _StoreEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._data[key]
                return None
            return entry.value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl if ttl > 0 else None
            self._data[key] = _StoreEntry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def cleanup_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._data.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)


class RedisStore(KeyValueStore):
    """Redis-based store with an atomic windowed increment.

    Example:
        >>> store = RedisStore("redis://localhost:6379/0")
        >>> count, ttl_ms = await store.increment_window("ratelimit:1.2.3.4", 60000)
    """

    supports_atomic_increment = True

    def __init__(self, redis_url: str | None = None, redis_client: Any | None = None) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            redis_client: Pre-built client, mainly for tests
        """
        self._redis_url = redis_url
        self._redis = redis_client

    async def _get_client(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def get(self, key: str) -> bytes | None:
        client = await self._get_client()
        return await client.get(key)

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        client = await self._get_client()
        await client.setex(key, max(1, ttl), value)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def increment_window(self, key: str, window_ms: int) -> tuple[int, int]:
        client = await self._get_client()
        count, ttl_ms = await client.eval(
            WINDOW_INCREMENT_SCRIPT,
            1,  # Number of keys
            key,  # KEYS[1]
            int(window_ms),  # ARGV[1]
        )
        return int(count), int(ttl_ms)

    async def ping(self) -> bool:
        client = await self._get_client()
        return bool(await client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_store(backend: str, redis_url: str | None = None) -> KeyValueStore:
    """Build a store for the configured backend ('memory' or 'redis')."""
    if backend == "redis":
        return RedisStore(redis_url)
    return InMemoryStore()
