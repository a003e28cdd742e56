"""Structured application logger with an in-memory ring buffer.

Entries at or above the minimum level are kept in a fixed-size buffer for
the ``/api/logs`` endpoint and emitted through the standard logging tree,
where the configured handlers route them by severity (stdout below ERROR,
stderr from ERROR up). The entry travels as structured ``extra`` fields and
the ``edge.app.events`` handlers always format it as JSON, whatever the
configured console format.
"""

import logging
import threading
from collections import deque
from typing import Any, Dict, Iterable, List, Optional

from edge.app.core.logging import get_logger
from edge.app.services.monitoring.models import (
    ErrorInfo,
    LogEntry,
    LogLevel,
    PerformanceInfo,
    RequestInfo,
    utc_now_iso,
)

DEFAULT_BUFFER_SIZE = 100


class StructuredLogger:
    """Leveled logger that keeps the most recent entries in memory.

    Example:
        log = StructuredLogger("adele-api", "production")
        log.info("Project created", {"project_id": 42})
        log.error("Generation failed", error=exc, context={"project_id": 42})
        recent = log.get_recent_logs(10)
    """

    def __init__(
        self,
        service_name: str,
        environment: str,
        min_level: "LogLevel | str" = LogLevel.INFO,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        sink: Optional[logging.Logger] = None,
    ):
        """Initialize the logger.

        Args:
            service_name: Added to every entry's context as ``service``
            environment: Added to every entry's context as ``environment``
            min_level: Entries below this level are dropped
            buffer_size: Ring buffer capacity; oldest entries are evicted first
            sink: Standard logger receiving emitted entries
        """
        self.service_name = service_name
        self.environment = environment
        self.min_level = LogLevel.parse(min_level)
        self._buffer: deque[LogEntry] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._sink = sink or get_logger("edge.app.events")

    def should_log(self, level: LogLevel) -> bool:
        return level.severity >= self.min_level.severity

    def log(
        self,
        level: "LogLevel | str",
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        request: Optional[RequestInfo] = None,
        performance: Optional[PerformanceInfo] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Optional[LogEntry]:
        """Record an entry.

        Returns:
            The stored entry, or None when ``level`` is below the minimum
        """
        level = LogLevel.parse(level)
        if not self.should_log(level):
            return None

        entry = LogEntry(
            timestamp=utc_now_iso(),
            level=level,
            message=message,
            context={
                **(context or {}),
                "service": self.service_name,
                "environment": self.environment,
            },
            error=ErrorInfo.from_exception(error) if error is not None else None,
            request=request,
            performance=performance,
            tags=tuple(tags or ()),
        )

        with self._lock:
            self._buffer.append(entry)

        self._emit(entry)
        return entry

    def _emit(self, entry: LogEntry) -> None:
        data = entry.to_dict()
        extra = {
            "event_level": data.pop("level"),
            "event_timestamp": data.pop("timestamp"),
        }
        data.pop("message")
        extra.update(data)
        self._sink.log(entry.level.logging_level, entry.message, extra=extra)

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, message, context, **kwargs)

    def warn(self, message: str, context: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, message, context, **kwargs)

    warning = warn

    def error(
        self,
        message: str,
        error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, message, context, error=error, **kwargs)

    def fatal(
        self,
        message: str,
        error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> Optional[LogEntry]:
        return self.log(LogLevel.FATAL, message, context, error=error, **kwargs)

    def get_recent_logs(self, count: int = 50) -> List[LogEntry]:
        """Most recent ``count`` entries, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            entries = list(self._buffer)
        return entries[-count:]

    def clear_buffer(self) -> None:
        with self._lock:
            self._buffer.clear()
