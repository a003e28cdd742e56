import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from edge.app.api.monitoring import router as monitoring_router
from edge.app.core.config import settings
from edge.app.core.http_client import init_http_client
from edge.app.core.kv import KeyValueStore, create_store
from edge.app.core.logging import get_logger, setup_logging
from edge.app.exceptions import EdgeException
from edge.app.middleware.monitoring import MonitoringMiddleware
from edge.app.middleware.rate_limit import (
    IPBlocklist,
    RateLimiter,
    RateLimitMiddleware,
    create_policy_limiters,
    default_rules,
)
from edge.app.middleware.request_id import RequestIdMiddleware, get_request_id
from edge.app.services.monitoring import Monitoring, init_monitoring


async def run_cleanup(
    limiters: Iterable[RateLimiter],
    blocklist: IPBlocklist,
    interval: float,
) -> None:
    """Sweep expired limiter entries and blocks every ``interval`` seconds."""
    logger = get_logger(__name__)
    while True:
        await asyncio.sleep(interval)
        for limiter in limiters:
            await limiter.cleanup()
        removed = blocklist.cleanup()
        if removed:
            logger.debug(f"Expired {removed} blocklist entries")


def create_app(
    monitoring: Optional[Monitoring] = None,
    store: Optional[KeyValueStore] = None,
    blocklist: Optional[IPBlocklist] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        monitoring: Monitoring context (None = built from settings)
        store: Shared rate limit store (None = built from settings)
        blocklist: IP blocklist (None = empty, default duration from settings)

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    if monitoring is None:
        monitoring = init_monitoring()
    if store is None:
        store = create_store(settings.rate_limit_backend, settings.redis_url)
    if blocklist is None:
        blocklist = IPBlocklist(
            default_duration=settings.ip_block_duration_seconds,
            cleanup_interval=settings.rate_limit_cleanup_interval_seconds,
        )

    # In-memory mode keeps per-process windows; the store only backs limits
    # when it is shared.
    if settings.rate_limit_backend == "redis":
        limiters = create_policy_limiters(store=store)
    else:
        limiters = create_policy_limiters(backend="memory")

    async def store_check() -> bool:
        return await store.ping()

    monitoring.health.register("rate_limit_store", store_check)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Opens the shared HTTP client used for error forwarding and runs the
        periodic limiter sweep; on shutdown flushes pending error reports and
        closes the store.
        """
        async with init_http_client():
            cleanup_task = asyncio.create_task(
                run_cleanup(
                    limiters.values(),
                    blocklist,
                    settings.rate_limit_cleanup_interval_seconds,
                )
            )
            monitoring.logger.info(
                "Application startup complete",
                {
                    "rate_limit_backend": settings.rate_limit_backend,
                    "rate_limit_algorithm": settings.rate_limit_algorithm,
                    "policies": sorted(limiters),
                    "error_forwarding": monitoring.error_tracker.forwarding_enabled,
                },
            )

            yield

            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
            await monitoring.shutdown()

        await store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="ADELE Edge API",
        description="Request admission guard and observability endpoints",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.monitoring = monitoring
    app.state.blocklist = blocklist
    app.state.store = store
    app.state.limiters = limiters

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        RateLimitMiddleware,
        rules=default_rules(limiters),
        blocklist=blocklist,
        enabled=settings.rate_limit_enabled,
    )

    # Monitoring wraps the guard so 403/429 responses are counted and timed
    app.add_middleware(MonitoringMiddleware, monitoring=monitoring)

    app.add_middleware(RequestIdMiddleware)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    app.include_router(monitoring_router)

    @app.exception_handler(EdgeException)
    async def edge_exception_handler(request: Request, exc: EdgeException) -> JSONResponse:
        """Render EdgeException subclasses with their own status code."""
        headers = None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            headers = {"Retry-After": str(retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client. The error is logged and
        handed to the error tracker; debug mode adds the exception message.
        """
        request_id = get_request_id(request)
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )
        monitoring.error_tracker.capture_nowait(exc, context)

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
