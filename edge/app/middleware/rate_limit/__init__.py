"""Request admission guard.

This package rejects abusive traffic before business logic runs: a
temporary IP blocklist checked first, then one or more rate limit policies
matched by request path. Supports fixed and sliding windows in memory, and
fixed windows in a shared Redis store.
"""

import time
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from edge.app.core.config import settings
from edge.app.core.kv import KeyValueStore, create_store
from edge.app.core.logging import get_log_context, get_logger
from edge.app.exceptions import IPBlockedError, RateLimitExceededError

# Re-export models
from edge.app.middleware.rate_limit.models import (
    DEFAULT_POLICIES,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    SlidingWindowLog,
    build_policies,
)

# Re-export backends
from edge.app.middleware.rate_limit.backends import (
    FixedWindowRateLimiter,
    RateLimitBackend,
    SlidingWindowRateLimiter,
    StoreFixedWindowRateLimiter,
)
from edge.app.middleware.rate_limit.blocklist import IPBlocklist

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitEntry",
    "SlidingWindowLog",
    "RateLimitConfig",
    "DEFAULT_POLICIES",
    "build_policies",
    # Backends
    "RateLimitBackend",
    "FixedWindowRateLimiter",
    "SlidingWindowRateLimiter",
    "StoreFixedWindowRateLimiter",
    "IPBlocklist",
    # Main classes
    "RateLimiter",
    "RateLimitRule",
    "RateLimitMiddleware",
    "client_identity",
    "create_policy_limiters",
    "default_rules",
]


def client_identity(request: Request) -> str:
    """Identity key for a request: the client network address.

    Prefers the edge proxy header, then the first X-Forwarded-For hop, then
    the socket peer. Clients that cannot be identified share the
    ``"unknown"`` bucket.
    """
    ip = request.headers.get("CF-Connecting-IP", "").strip()
    if ip:
        return ip

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


class RateLimiter:
    """Rate limiter for one policy that selects the appropriate backend.

    Uses the shared store backend when ``backend`` is "redis" (or a store is
    given), otherwise a per-process backend running ``algorithm``.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        algorithm: Optional[str] = None,
        backend: Optional[str] = None,
        store: Optional[KeyValueStore] = None,
        key_prefix: str = "ratelimit:",
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter with appropriate backend.

        Args:
            config: Policy to enforce
            algorithm: fixed_window or sliding_window (None = from settings)
            backend: memory or redis (None = from settings)
            store: Shared store; implies the store backend
            key_prefix: Namespace for keys in the shared store
            clock: Time source in epoch seconds
        """
        self.config = config
        algorithm = algorithm or settings.rate_limit_algorithm
        backend = backend or settings.rate_limit_backend

        if store is None and backend == "redis":
            store = create_store("redis", settings.redis_url)

        if store is not None:
            if algorithm == "sliding_window":
                logger.warning(
                    "Sliding window is not available with a shared store; using fixed window"
                )
            self._backend: RateLimitBackend = StoreFixedWindowRateLimiter(
                config,
                store,
                key_prefix=key_prefix,
                clock=clock,
                fail_closed=settings.rate_limit_fail_closed,
            )
            logger.debug("Using shared store rate limiter backend")
        elif algorithm == "sliding_window":
            self._backend = SlidingWindowRateLimiter(
                config,
                clock=clock,
                cleanup_interval=settings.rate_limit_cleanup_interval_seconds,
                max_entries=settings.rate_limit_max_entries,
            )
        else:
            self._backend = FixedWindowRateLimiter(
                config,
                clock=clock,
                cleanup_interval=settings.rate_limit_cleanup_interval_seconds,
                max_entries=settings.rate_limit_max_entries,
            )

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    async def is_allowed(self, key: str) -> RateLimitResult:
        """Check if a request for ``key`` is allowed."""
        return await self._backend.is_allowed(key)

    async def cleanup(self) -> None:
        """Clean up expired entries."""
        await self._backend.cleanup()


@dataclass
class RateLimitRule:
    """Applies ``limiter`` to request paths matching ``pattern``.

    Patterns are shell-style globs (``/api/auth/*``). A tuple of globs
    matches when any of them does, counting the request once.
    """
    pattern: Union[str, Tuple[str, ...]]
    limiter: RateLimiter
    name: str = ""

    def matches(self, path: str) -> bool:
        patterns = (self.pattern,) if isinstance(self.pattern, str) else self.pattern
        return any(fnmatchcase(path, pattern) for pattern in patterns)


def create_policy_limiters(
    policies: Optional[Mapping[str, RateLimitConfig]] = None,
    **limiter_kwargs,
) -> Dict[str, RateLimiter]:
    """Build one limiter per named policy.

    Args:
        policies: Policy table (None = defaults with settings overrides)
        **limiter_kwargs: Passed to every RateLimiter

    Returns:
        Mapping of policy name to limiter
    """
    if policies is None:
        policies = build_policies(settings.rate_limit_overrides)
    return {
        name: RateLimiter(config, key_prefix=f"ratelimit:{name}:", **limiter_kwargs)
        for name, config in policies.items()
    }


def default_rules(limiters: Mapping[str, RateLimiter]) -> List[RateLimitRule]:
    """Route-to-policy mapping for the public API.

    Every matching rule is applied in order, so chat requests count against
    both the expensive and the general API policy.
    """
    mapping = [
        ("/api/auth/*", "auth"),
        ("/api/oauth/*", "auth"),
        ("/api/auth/password-reset*", "passwordReset"),
        ("/api/chat/*", "expensive"),
        ("/api/voice/*", "expensive"),
        ("/api/projects/*/generate", "expensive"),
        (("/api/upload*", "/api/*/upload*"), "upload"),
        ("/api/*", "api"),
    ]
    return [
        RateLimitRule(pattern=pattern, limiter=limiters[name], name=name)
        for pattern, name in mapping
        if name in limiters
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the blocklist and rate limits on requests.

    Blocked identities get 403 ``ip_blocked`` without touching any counter.
    Otherwise each matching rule counts the request; the first rejection
    returns 429 ``rate_limit_exceeded``. X-RateLimit-* headers describe the
    last evaluated policy.
    """

    def __init__(
        self,
        app,
        rules: Optional[Sequence[RateLimitRule]] = None,
        blocklist: Optional[IPBlocklist] = None,
        key_func: Callable[[Request], str] = client_identity,
        enabled: bool = True,
    ):
        super().__init__(app)
        self.rules = list(rules) if rules is not None else default_rules(create_policy_limiters())
        self.blocklist = blocklist
        self.key_func = key_func
        self.enabled = enabled

    @staticmethod
    def _count(request: Request, name: str) -> None:
        """Report a decision into the metrics collector when one is attached."""
        monitoring = getattr(request.app.state, "monitoring", None)
        if monitoring is not None:
            monitoring.metrics.increment(name)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with blocklist and rate limit checks."""
        if not self.enabled:
            return await call_next(request)

        identity = self.key_func(request) or UNKNOWN_CLIENT
        path = request.url.path

        if self.blocklist is not None:
            retry_after = self.blocklist.retry_after(identity)
            if retry_after is not None:
                self._count(request, "ratelimit.blocked")
                logger.info(
                    "Blocked client rejected",
                    extra=get_log_context(client_ip=identity, path=path),
                )
                error = IPBlockedError(retry_after)
                return JSONResponse(
                    status_code=error.status_code,
                    content=error.to_response(),
                    headers={"Retry-After": str(retry_after)},
                )

        last_result: Optional[RateLimitResult] = None
        for rule in self.rules:
            if not rule.matches(path):
                continue
            key_func = rule.limiter.config.key_func
            key = key_func(request) if key_func is not None else identity
            result = await rule.limiter.is_allowed(key or UNKNOWN_CLIENT)
            last_result = result

            if not result.allowed:
                self._count(request, "ratelimit.rejected")
                logger.info(
                    "Rate limit exceeded",
                    extra=get_log_context(client_ip=identity, path=path, policy=rule.name),
                )
                error = RateLimitExceededError(result.retry_after or 0, rule.limiter.config.message)
                return JSONResponse(
                    status_code=error.status_code,
                    content=error.to_response(),
                    headers=result.headers(),
                )

        if last_result is not None:
            self._count(request, "ratelimit.allowed")

        response = await call_next(request)

        if last_result is not None:
            for header, value in last_result.headers().items():
                response.headers[header] = value

        return response
