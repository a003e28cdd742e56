"""Data models for rate limiting."""

from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional

from starlette.requests import Request


DEFAULT_MESSAGE = "Too many requests, please try again later."


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_after: int  # Seconds until the current window resets
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        """Response headers describing this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_after),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after or 0)
        return headers


@dataclass
class RateLimitEntry:
    """Fixed window counter for one identity key.

    ``reset_time`` is the exclusive end of the window; once ``now`` reaches
    it the entry is replaced rather than incremented.
    """
    count: int = 0
    reset_time: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.reset_time


@dataclass
class SlidingWindowLog:
    """Request instants for one identity key, oldest first."""
    timestamps: deque = field(default_factory=deque)

    def prune(self, cutoff: float) -> None:
        """Drop every instant at or before ``cutoff``."""
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def __len__(self) -> int:
        return len(self.timestamps)


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit policy.

    Attributes:
        window_seconds: Length of the window
        max_requests: Requests admitted per window
        message: Message returned with rate_limit_exceeded rejections
        key_func: Derives the identity key from a request; None means the
            client network address
    """
    window_seconds: float
    max_requests: int
    message: str = DEFAULT_MESSAGE
    key_func: Optional[Callable[[Request], str]] = None

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")


DEFAULT_POLICIES: Dict[str, RateLimitConfig] = {
    # Brute force protection for login and OAuth
    "auth": RateLimitConfig(
        window_seconds=15 * 60,
        max_requests=10,
        message="Too many authentication attempts. Please try again in 15 minutes.",
    ),
    "api": RateLimitConfig(
        window_seconds=60,
        max_requests=60,
        message="API rate limit exceeded. Please slow down your requests.",
    ),
    # AI chat, voice and code generation
    "expensive": RateLimitConfig(
        window_seconds=60,
        max_requests=10,
        message="Rate limit for AI operations exceeded. Please wait before making more requests.",
    ),
    "passwordReset": RateLimitConfig(
        window_seconds=60 * 60,
        max_requests=3,
        message="Too many password reset attempts. Please try again in an hour.",
    ),
    "upload": RateLimitConfig(
        window_seconds=60,
        max_requests=20,
        message="Upload rate limit exceeded. Please wait before uploading more files.",
    ),
    "read": RateLimitConfig(
        window_seconds=60,
        max_requests=200,
        message="Read rate limit exceeded.",
    ),
}


def build_policies(
    overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Dict[str, RateLimitConfig]:
    """Resolve the policy table with per-policy overrides applied.

    Args:
        overrides: Policy name to partial config, e.g.
            ``{"api": {"max_requests": 120}}``. Unknown names define new
            policies and must then give window_seconds and max_requests.

    Returns:
        New mapping of policy name to RateLimitConfig

    Raises:
        ValueError: If an override names an unknown field or a new policy
            is incomplete
    """
    policies = dict(DEFAULT_POLICIES)
    allowed_fields = {"window_seconds", "max_requests", "message"}

    for name, values in (overrides or {}).items():
        unknown = set(values) - allowed_fields
        if unknown:
            raise ValueError(
                f"Unknown rate limit fields for policy '{name}': {sorted(unknown)}"
            )
        if name in policies:
            policies[name] = replace(policies[name], **values)
        elif "window_seconds" in values and "max_requests" in values:
            policies[name] = RateLimitConfig(**values)
        else:
            raise ValueError(
                f"New rate limit policy '{name}' needs window_seconds and max_requests"
            )

    return policies
