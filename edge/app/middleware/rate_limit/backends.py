"""Rate limit backends.

Three algorithms share the same decision shape:

- ``FixedWindowRateLimiter``: per-process counters reset at window boundaries.
- ``SlidingWindowRateLimiter``: per-process request logs, exact over any span
  of ``window_seconds`` at the cost of memory proportional to traffic.
- ``StoreFixedWindowRateLimiter``: fixed windows kept in a shared key-value
  store so several processes see the same counters.

In-memory backends sweep expired keys lazily, at most once per
``cleanup_interval``, at the start of a check. ``cleanup()`` runs the same
sweep and can be driven by a background task instead.
"""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import asdict
from typing import Callable, Optional

from redis.exceptions import RedisError

from edge.app.core.kv import InMemoryStore, KeyValueStore
from edge.app.core.logging import get_logger
from edge.app.middleware.rate_limit.models import (
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    SlidingWindowLog,
)

logger = get_logger(__name__)

DEFAULT_CLEANUP_INTERVAL = 60.0
DEFAULT_MAX_ENTRIES = 10000


def _seconds_until(deadline: float, now: float) -> int:
    return max(0, math.ceil(deadline - now))


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self._clock = clock

    @property
    def limit(self) -> int:
        return self.config.max_requests

    @property
    def window_seconds(self) -> float:
        return self.config.window_seconds

    @abstractmethod
    async def is_allowed(self, key: str) -> RateLimitResult:
        """Count a request for ``key`` and decide whether to admit it.

        Args:
            key: Identity key

        Returns:
            RateLimitResult with allowed status and header metadata
        """
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Remove expired state."""
        pass

    def _window_result(self, count: int, reset_time: float, now: float) -> RateLimitResult:
        """Decision for a fixed window holding ``count`` requests.

        The request that pushes the count past the limit is itself rejected.
        """
        reset_after = _seconds_until(reset_time, now)
        allowed = count <= self.limit
        return RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_after=reset_after,
            retry_after=None if allowed else reset_after,
        )


class _InMemoryBackend(RateLimitBackend):
    """Shared bookkeeping for per-process backends.

    Memory bounds:
    - Expired keys are swept at most once per ``cleanup_interval``
    - At most ``max_entries`` keys are tracked; least recently used keys
      are evicted first when a new key arrives at the cap
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        super().__init__(config, clock)
        self._cleanup_interval = cleanup_interval
        self._max_entries = max_entries
        self._last_cleanup = float("-inf")
        self._storage: OrderedDict = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._storage)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._sweep(now)

    @abstractmethod
    def _sweep(self, now: float) -> int:
        """Drop expired keys; returns how many were removed."""
        pass

    def _make_room(self, now: float) -> None:
        """Enforce max entries before a new key is inserted.

        Expired keys go first, then least recently used ones. An evicted key
        that was still inside its window loses its count and starts a fresh
        window on its next request.
        """
        if len(self._storage) < self._max_entries:
            return
        self._sweep(now)
        evicted = 0
        while len(self._storage) >= self._max_entries:
            self._storage.popitem(last=False)
            evicted += 1
        if evicted:
            logger.warning(
                f"Rate limit key cap reached ({self._max_entries}); "
                f"evicted {evicted} least recently used keys"
            )

    async def cleanup(self) -> None:
        async with self._lock:
            removed = self._sweep(self._clock())
        if removed:
            logger.debug(f"Rate limit cleanup removed {removed} keys")


class FixedWindowRateLimiter(_InMemoryBackend):
    """Fixed window counter per identity key.

    Admits bursts of up to twice the limit across a window boundary.
    """

    async def is_allowed(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            entry: Optional[RateLimitEntry] = self._storage.get(key)
            if entry is None or entry.is_expired(now):
                if entry is None:
                    self._make_room(now)
                entry = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
                self._storage[key] = entry
            else:
                entry.count += 1
            self._storage.move_to_end(key)

            return self._window_result(entry.count, entry.reset_time, now)

    def _sweep(self, now: float) -> int:
        self._last_cleanup = now
        expired = [key for key, entry in self._storage.items() if entry.is_expired(now)]
        for key in expired:
            del self._storage[key]
        return len(expired)


class SlidingWindowRateLimiter(_InMemoryBackend):
    """Sliding window log per identity key.

    At most ``max_requests`` requests are admitted in any span of
    ``window_seconds``. Rejected requests are not recorded.
    """

    async def is_allowed(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            log: Optional[SlidingWindowLog] = self._storage.get(key)
            if log is None:
                self._make_room(now)
                log = SlidingWindowLog()
                self._storage[key] = log
            self._storage.move_to_end(key)

            log.prune(now - self.window_seconds)

            if len(log) >= self.limit:
                retry_after = max(1, _seconds_until(log.timestamps[0] + self.window_seconds, now))
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_after=retry_after,
                    retry_after=retry_after,
                )

            log.timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - len(log),
                reset_after=_seconds_until(log.timestamps[0] + self.window_seconds, now),
            )

    def _sweep(self, now: float) -> int:
        self._last_cleanup = now
        cutoff = now - self.window_seconds
        empty = []
        for key, log in self._storage.items():
            log.prune(cutoff)
            if not log.timestamps:
                empty.append(key)
        for key in empty:
            del self._storage[key]
        return len(empty)


class StoreFixedWindowRateLimiter(RateLimitBackend):
    """Fixed window counters kept in a shared key-value store.

    Entries are written with a TTL equal to the rest of the window, so the
    store expires them and no local sweep is needed.

    Concurrency: when the store offers an atomic increment (Redis) it is
    used and counts are exact. Otherwise the check is a get followed by a
    put; two concurrent requests can read the same count and both be
    admitted, overshooting the limit by the number of racing requests. That
    approximation is accepted for stores without atomic primitives.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        store: KeyValueStore,
        key_prefix: str = "ratelimit:",
        clock: Callable[[], float] = time.time,
        fail_closed: bool = False,
    ):
        """Initialize the store-backed limiter.

        Args:
            config: Rate limit policy
            store: Shared key-value store
            key_prefix: Namespace for counter keys
            clock: Time source in epoch seconds
            fail_closed: Deny requests when the store is unavailable
        """
        super().__init__(config, clock)
        self._store = store
        self._key_prefix = key_prefix
        self._fail_closed = fail_closed

    async def is_allowed(self, key: str) -> RateLimitResult:
        store_key = f"{self._key_prefix}{key}"
        now = self._clock()
        try:
            if self._store.supports_atomic_increment:
                count, ttl_ms = await self._store.increment_window(
                    store_key, int(self.window_seconds * 1000)
                )
                return self._window_result(count, now + ttl_ms / 1000, now)

            entry = self._decode(await self._store.get(store_key))
            if entry is None or entry.is_expired(now):
                entry = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
            else:
                entry = RateLimitEntry(count=entry.count + 1, reset_time=entry.reset_time)

            ttl = max(1, _seconds_until(entry.reset_time, now))
            await self._store.set(store_key, json.dumps(asdict(entry)).encode(), ttl)
            return self._window_result(entry.count, entry.reset_time, now)

        except RedisError as e:
            logger.error(f"Rate limit store error: {e}")
            return self._handle_store_failure(now)
        except OSError as e:
            logger.error(f"Rate limit store unreachable: {e}")
            return self._handle_store_failure(now)

    @staticmethod
    def _decode(raw: Optional[bytes]) -> Optional[RateLimitEntry]:
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return RateLimitEntry(count=int(data["count"]), reset_time=float(data["reset_time"]))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed rate limit entry")
            return None

    def _handle_store_failure(self, now: float) -> RateLimitResult:
        """Fail open (default) or closed when the store cannot be reached."""
        reset_after = math.ceil(self.window_seconds)
        if self._fail_closed:
            logger.warning("Rate limiting fail-closed triggered. Request denied.")
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_after=reset_after,
                retry_after=reset_after,
            )

        logger.warning("Rate limiting fail-open triggered. Request allowed without check.")
        return RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=self.limit,
            reset_after=reset_after,
        )

    async def cleanup(self) -> None:
        # Stores expire keys themselves; the in-memory one only on access.
        if isinstance(self._store, InMemoryStore):
            await self._store.cleanup_expired()
