"""Per-request logging and metrics hooks."""

import time
from dataclasses import dataclass, field
from typing import Optional

from edge.app.services.monitoring.logger import StructuredLogger
from edge.app.services.monitoring.metrics import MetricsCollector
from edge.app.services.monitoring.models import PerformanceInfo, RequestInfo


@dataclass
class RequestTiming:
    method: str
    path: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None
    request_id: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)

    def request_info(self) -> RequestInfo:
        return RequestInfo(
            method=self.method,
            path=self.path,
            ip=self.ip,
            user_agent=self.user_agent,
            user_id=self.user_id,
        )


class RequestMonitor:
    """Records request start, completion and failure.

    Metrics written:
    - ``requests.total`` and ``requests.<method>`` on start
    - ``responses.<n>xx`` and ``response.time`` on completion
    - ``requests.errors`` for 4xx/5xx responses and unhandled exceptions
    """

    def __init__(self, logger: StructuredLogger, metrics: MetricsCollector):
        self.logger = logger
        self.metrics = metrics

    def on_request(
        self,
        method: str,
        path: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> RequestTiming:
        timing = RequestTiming(
            method=method,
            path=path,
            ip=ip,
            user_agent=user_agent,
            user_id=user_id,
            request_id=request_id,
        )
        self.metrics.increment("requests.total")
        self.metrics.increment(f"requests.{method.lower()}")
        self.logger.debug(
            "Request started",
            {"method": method, "path": path, "request_id": request_id},
            request=timing.request_info(),
        )
        return timing

    def on_response(self, timing: RequestTiming, status: int) -> None:
        duration = timing.elapsed_ms()
        self.metrics.timing("response.time", duration)
        self.metrics.increment(f"responses.{status // 100}xx")
        if status >= 400:
            self.metrics.increment("requests.errors")

        self.logger.info(
            "Request completed",
            {
                "method": timing.method,
                "path": timing.path,
                "status": status,
                "request_id": timing.request_id,
            },
            request=timing.request_info(),
            performance=PerformanceInfo(duration_ms=duration),
        )

    def on_error(self, timing: RequestTiming, error: BaseException) -> None:
        duration = timing.elapsed_ms()
        self.metrics.increment("requests.errors")
        self.metrics.timing("response.time", duration)

        self.logger.error(
            "Request failed",
            error=error,
            context={
                "method": timing.method,
                "path": timing.path,
                "request_id": timing.request_id,
            },
            request=timing.request_info(),
            performance=PerformanceInfo(duration_ms=duration),
        )
