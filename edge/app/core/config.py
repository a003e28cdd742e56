from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Deployment identity
    environment: str = "production"  # production | staging | development
    service_name: str = "adele-api"
    app_version: str = Field(default="1.0.0", validation_alias="VERSION")

    # Debug mode - exposes exception messages in 500 responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # In-memory retention for introspection endpoints
    log_buffer_size: int = 100
    error_buffer_size: int = 100
    metrics_histogram_size: int = 1000  # Samples kept per timing series

    # Error forwarding (Sentry store API); empty disables forwarding
    sentry_dsn: str = ""

    # CORS allowed origins (JSON list in the environment)
    cors_origins: list[str] = []

    # Admin token for /api/metrics, /api/logs, /api/errors and blocklist
    admin_token: str = ""

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_algorithm: str = "fixed_window"  # fixed_window | sliding_window
    rate_limit_backend: str = "memory"  # memory | redis
    rate_limit_cleanup_interval_seconds: float = 60.0
    rate_limit_max_entries: int = 10000  # Per-limiter key cap (LRU eviction)
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when the shared store is unavailable
    )
    # Per-policy overrides, e.g. {"api": {"max_requests": 120}}
    rate_limit_overrides: dict[str, dict[str, Any]] = {}

    # IP blocking
    ip_block_duration_seconds: float = 24 * 60 * 60

    # Redis settings (shared store for the distributed limiter)
    redis_url: str = "redis://localhost:6379/0"

    # HTTP client settings (error forwarding)
    httpx_timeout: float = 10.0
    httpx_connect_timeout: float = 5.0
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 5

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @field_validator("rate_limit_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Validate the rate limiting algorithm name."""
        v = v.strip().lower()
        if v not in ("fixed_window", "sliding_window"):
            raise ValueError("rate_limit_algorithm must be fixed_window or sliding_window")
        return v

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate the rate limit storage backend."""
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("rate_limit_backend must be memory or redis")
        return v

    @field_validator(
        "log_buffer_size",
        "error_buffer_size",
        "metrics_histogram_size",
        "rate_limit_max_entries",
        "httpx_max_connections",
        "httpx_max_keepalive_connections",
    )
    @classmethod
    def validate_size_positive(cls, v: int) -> int:
        """Validate buffer and pool sizes are positive."""
        if v < 1:
            raise ValueError("size values must be at least 1")
        return v

    @field_validator(
        "rate_limit_cleanup_interval_seconds",
        "ip_block_duration_seconds",
        "httpx_timeout",
        "httpx_connect_timeout",
    )
    @classmethod
    def validate_duration_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Duration values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
