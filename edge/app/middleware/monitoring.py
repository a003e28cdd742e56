"""Request monitoring middleware.

Times every HTTP request and feeds the structured logger and metrics
collector through ``RequestMonitor``.
"""

from typing import Optional

from edge.app.exceptions import MonitoringNotInitializedError
from edge.app.services.monitoring import Monitoring


def monitoring_from_scope(scope) -> Monitoring:
    """Monitoring context attached to the application serving ``scope``."""
    app = scope.get("app")
    monitoring = getattr(getattr(app, "state", None), "monitoring", None)
    if monitoring is None:
        raise MonitoringNotInitializedError()
    return monitoring


def _header(scope, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


class MonitoringMiddleware:
    """Middleware to log and measure requests.

    Example:
        app.add_middleware(MonitoringMiddleware)
    """

    def __init__(self, app, monitoring: Optional[Monitoring] = None):
        self.app = app
        self.monitoring = monitoring

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        monitoring = self.monitoring or monitoring_from_scope(scope)
        state = scope.get("state") or {}
        client = scope.get("client")

        timing = monitoring.requests.on_request(
            method=scope.get("method", "GET"),
            path=scope.get("path", "unknown"),
            ip=client[0] if client else None,
            user_agent=_header(scope, b"user-agent"),
            user_id=state.get("user_id"),
            request_id=state.get("request_id") or _header(scope, b"x-request-id"),
        )

        status_code = 500

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception as exc:
            monitoring.requests.on_error(timing, exc)
            raise

        monitoring.requests.on_response(timing, status_code)
