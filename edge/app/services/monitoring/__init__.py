"""Observability for the edge service: structured logs, metrics, error
tracking and health checks.

The components live on a ``Monitoring`` context object built once at
startup (``init_monitoring``) and handed to whatever needs it; the app keeps
it on ``app.state.monitoring``. The module-level getters raise
``MonitoringNotInitializedError`` when used before startup.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from edge.app.core.config import settings
from edge.app.core.logging import get_logger
from edge.app.exceptions import MonitoringNotInitializedError
from edge.app.services.monitoring.errors import ErrorTracker, SentryDsn
from edge.app.services.monitoring.health import HealthCheck, fold_status
from edge.app.services.monitoring.logger import StructuredLogger
from edge.app.services.monitoring.metrics import MetricsCollector, nearest_rank
from edge.app.services.monitoring.models import (
    CheckResult,
    CheckStatus,
    ErrorInfo,
    ErrorRecord,
    HealthStatus,
    LogEntry,
    LogLevel,
    OverallStatus,
    PerformanceInfo,
    RequestInfo,
)
from edge.app.services.monitoring.request import RequestMonitor, RequestTiming

logger = get_logger(__name__)

__all__ = [
    "CheckResult",
    "CheckStatus",
    "ErrorInfo",
    "ErrorRecord",
    "ErrorTracker",
    "HealthCheck",
    "HealthStatus",
    "LogEntry",
    "LogLevel",
    "MetricsCollector",
    "Monitoring",
    "OverallStatus",
    "PerformanceInfo",
    "RequestInfo",
    "RequestMonitor",
    "RequestTiming",
    "SentryDsn",
    "StructuredLogger",
    "fold_status",
    "get_error_tracker",
    "get_metrics",
    "get_monitoring",
    "get_structured_logger",
    "init_monitoring",
    "nearest_rank",
    "reset_monitoring",
    "shutdown_monitoring",
]


@dataclass
class Monitoring:
    """Logger, metrics, error tracker and health checks for one process."""

    logger: StructuredLogger
    metrics: MetricsCollector
    error_tracker: ErrorTracker
    health: HealthCheck
    started_at: float = field(default_factory=time.time)

    @property
    def requests(self) -> RequestMonitor:
        return RequestMonitor(self.logger, self.metrics)

    async def shutdown(self) -> None:
        """Flush pending error reports."""
        await self.error_tracker.flush()


_monitoring: Optional[Monitoring] = None


def init_monitoring(
    service_name: Optional[str] = None,
    environment: Optional[str] = None,
    sentry_dsn: Optional[str] = None,
    log_level: Optional[str] = None,
    version: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Monitoring:
    """Create the process monitoring context.

    Unset arguments come from settings. The log level defaults to debug in
    development and info elsewhere, unless LOG_LEVEL is set lower.

    Returns:
        The new Monitoring instance, also reachable through get_monitoring()
    """
    global _monitoring

    environment = environment or settings.environment
    if log_level is None:
        log_level = "debug" if environment.lower() == "development" else settings.log_level

    started_at = time.time()
    _monitoring = Monitoring(
        logger=StructuredLogger(
            service_name=service_name or settings.service_name,
            environment=environment,
            min_level=log_level,
            buffer_size=settings.log_buffer_size,
        ),
        metrics=MetricsCollector(histogram_size=settings.metrics_histogram_size),
        error_tracker=ErrorTracker(
            dsn=sentry_dsn if sentry_dsn is not None else (settings.sentry_dsn or None),
            buffer_size=settings.error_buffer_size,
            http_client=http_client,
        ),
        health=HealthCheck(version=version or settings.app_version, started_at=started_at),
        started_at=started_at,
    )
    logger.debug("Monitoring initialized")
    return _monitoring


def get_monitoring() -> Monitoring:
    if _monitoring is None:
        raise MonitoringNotInitializedError()
    return _monitoring


def get_structured_logger() -> StructuredLogger:
    if _monitoring is None:
        raise MonitoringNotInitializedError("Logger")
    return _monitoring.logger


def get_metrics() -> MetricsCollector:
    if _monitoring is None:
        raise MonitoringNotInitializedError("Metrics")
    return _monitoring.metrics


def get_error_tracker() -> ErrorTracker:
    if _monitoring is None:
        raise MonitoringNotInitializedError("Error tracker")
    return _monitoring.error_tracker


async def shutdown_monitoring() -> None:
    """Flush and discard the process monitoring context."""
    global _monitoring
    if _monitoring is not None:
        await _monitoring.shutdown()
        _monitoring = None


def reset_monitoring() -> None:
    """Discard the monitoring context without flushing (useful for testing)."""
    global _monitoring
    _monitoring = None
