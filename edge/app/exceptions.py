"""Custom exceptions for the edge application."""


class EdgeException(Exception):
    """Base class for edge exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str = "Edge error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error, "message": self.message}


class RateLimitExceededError(EdgeException):
    """Raised when a client has used up its request quota for the window.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int,
        message: str = "Too many requests, please try again later.",
    ):
        self.retry_after = retry_after
        super().__init__(message)

    def to_response(self) -> dict:
        return {
            "error": self.error,
            "message": self.message,
            "retryAfter": self.retry_after,
        }


class IPBlockedError(EdgeException):
    """Raised when a client identity is on the blocklist.

    Maps to HTTP 403 Forbidden.
    """
    status_code = 403
    error = "ip_blocked"

    def __init__(
        self,
        retry_after: int,
        message: str = "Your IP has been temporarily blocked due to suspicious activity.",
    ):
        self.retry_after = retry_after
        super().__init__(message)

    def to_response(self) -> dict:
        return {
            "error": self.error,
            "message": self.message,
            "retryAfter": self.retry_after,
        }


class MonitoringNotInitializedError(RuntimeError):
    """Raised when logger, metrics or error tracker are used before startup."""

    def __init__(self, component: str = "Monitoring"):
        super().__init__(
            f"{component} not initialized. Call init_monitoring() during startup."
        )
