"""Middleware package for the edge service."""

from edge.app.middleware.monitoring import MonitoringMiddleware
from edge.app.middleware.rate_limit import IPBlocklist, RateLimitMiddleware
from edge.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "IPBlocklist",
    "MonitoringMiddleware",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
