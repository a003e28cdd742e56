"""Data models for logging, error tracking and health checks."""

import logging
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LogLevel(str, Enum):
    """Log severity, ordered debug < info < warn < error < fatal."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def logging_level(self) -> int:
        """Matching standard library level."""
        return _LOGGING_LEVELS[self]

    @classmethod
    def parse(cls, value: "str | LogLevel") -> "LogLevel":
        """Accept enum members, their values or stdlib names (``WARNING``)."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        aliases = {"warning": "warn", "critical": "fatal"}
        return cls(aliases.get(name, name))


_SEVERITY = {level: rank for rank, level in enumerate(LogLevel)}

_LOGGING_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


@dataclass(frozen=True)
class ErrorInfo:
    """Serializable description of an exception."""
    name: str
    message: str
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        stack = None
        if exc.__traceback__ is not None:
            stack = "".join(traceback.format_exception(exc))
        return cls(name=type(exc).__name__, message=str(exc), stack=stack)


@dataclass(frozen=True)
class RequestInfo:
    """The request a log entry belongs to."""
    method: str
    path: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None


@dataclass(frozen=True)
class PerformanceInfo:
    duration_ms: float
    memory_bytes: Optional[int] = None


@dataclass(frozen=True)
class LogEntry:
    """Immutable structured log record."""
    timestamp: str
    level: LogLevel
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorInfo] = None
    request: Optional[RequestInfo] = None
    performance: Optional[PerformanceInfo] = None
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Dictionary form with empty optional sections omitted."""
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.error is not None:
            data["error"] = asdict(self.error)
        if self.request is not None:
            data["request"] = asdict(self.request)
        if self.performance is not None:
            data["performance"] = asdict(self.performance)
        if self.tags:
            data["tags"] = list(self.tags)
        return data


@dataclass(frozen=True)
class ErrorRecord:
    """A captured exception with the context it was reported with."""
    timestamp: str
    error: BaseException
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "error": {"name": type(self.error).__name__, "message": str(self.error)},
            "context": dict(self.context),
        }


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class CheckResult:
    name: str
    status: CheckStatus
    duration_ms: float
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "duration": self.duration_ms,
        }
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass
class HealthStatus:
    """Aggregate of named checks.

    ``uptime`` is in seconds, ``checks[].duration`` in milliseconds.
    """
    status: OverallStatus
    timestamp: str
    version: str
    uptime: float
    checks: List[CheckResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "version": self.version,
            "uptime": self.uptime,
            "checks": [check.to_dict() for check in self.checks],
        }
