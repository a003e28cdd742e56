"""Core utilities for the edge application."""

from edge.app.core.config import settings
from edge.app.core.kv import InMemoryStore, KeyValueStore, RedisStore, create_store
from edge.app.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "create_store",
    "get_logger",
    "setup_logging",
]
