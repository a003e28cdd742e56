"""Temporary IP blocklist.

A block is a hard deny checked before any rate limit accounting. Blocks
expire at an absolute instant; expired blocks are treated as absent and
swept opportunistically.
"""

import math
import threading
import time
from typing import Callable, Dict, Optional

from edge.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)

DEFAULT_BLOCK_DURATION = 24 * 60 * 60


class IPBlocklist:
    """Maps identity keys to the instant their block ends.

    Usage:
        blocklist = IPBlocklist()
        blocklist.block("203.0.113.7", duration_seconds=3600)
        if blocklist.is_blocked("203.0.113.7"):
            ...
        blocklist.unblock("203.0.113.7")
    """

    def __init__(
        self,
        default_duration: float = DEFAULT_BLOCK_DURATION,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.default_duration = default_duration
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._blocked: Dict[str, float] = {}
        self._last_cleanup = float("-inf")
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._blocked)

    def block(self, key: str, duration_seconds: Optional[float] = None) -> float:
        """Block ``key`` for ``duration_seconds`` (default duration if None).

        Returns:
            The instant (epoch seconds) the block ends
        """
        duration = self.default_duration if duration_seconds is None else duration_seconds
        if duration <= 0:
            raise ValueError("Block duration must be positive")
        with self._lock:
            unblock_time = self._clock() + duration
            self._blocked[key] = unblock_time
        logger.warning(
            "Client blocked",
            extra=get_log_context(client_ip=key, blocked_seconds=duration),
        )
        return unblock_time

    def unblock(self, key: str) -> bool:
        """Lift the block on ``key``; returns whether a block existed."""
        with self._lock:
            removed = self._blocked.pop(key, None) is not None
        if removed:
            logger.info("Client unblocked", extra=get_log_context(client_ip=key))
        return removed

    def is_blocked(self, key: str) -> bool:
        return self.retry_after(key) is not None

    def retry_after(self, key: str) -> Optional[int]:
        """Seconds until ``key`` is unblocked, or None when it is not blocked."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            unblock_time = self._blocked.get(key)
            if unblock_time is None or unblock_time <= now:
                return None
            return math.ceil(unblock_time - now)

    def blocked(self) -> Dict[str, float]:
        """Snapshot of active blocks (key to unblock instant)."""
        with self._lock:
            now = self._clock()
            return {key: until for key, until in self._blocked.items() if until > now}

    def cleanup(self) -> int:
        """Remove expired blocks; returns how many were removed."""
        with self._lock:
            return self._sweep(self._clock())

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_cleanup >= self._cleanup_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        self._last_cleanup = now
        expired = [key for key, until in self._blocked.items() if until <= now]
        for key in expired:
            del self._blocked[key]
        return len(expired)
