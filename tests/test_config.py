import pytest
from pydantic import ValidationError

from edge.app.core.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in ("ENVIRONMENT", "RATE_LIMIT_ALGORITHM", "RATE_LIMIT_BACKEND", "VERSION"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.is_development is False
    assert settings.app_version == "1.0.0"
    assert settings.rate_limit_algorithm == "fixed_window"
    assert settings.rate_limit_backend == "memory"
    assert settings.ip_block_duration_seconds == 86400
    assert settings.log_buffer_size == 100
    assert settings.metrics_histogram_size == 1000


def test_version_read_from_env(monkeypatch) -> None:
    monkeypatch.setenv("VERSION", "2.3.4")
    assert Settings(_env_file=None).app_version == "2.3.4"


def test_development_environment(monkeypatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "Development")
    assert Settings(_env_file=None).is_development is True


def test_algorithm_is_normalized(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_ALGORITHM", " Sliding_Window ")
    assert Settings(_env_file=None).rate_limit_algorithm == "sliding_window"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("RATE_LIMIT_ALGORITHM", "token_bucket"),
        ("RATE_LIMIT_BACKEND", "memcached"),
        ("LOG_BUFFER_SIZE", "0"),
        ("IP_BLOCK_DURATION_SECONDS", "-1"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_policy_overrides_from_json(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_OVERRIDES", '{"api": {"max_requests": 120}}')

    settings = Settings(_env_file=None)
    assert settings.rate_limit_overrides == {"api": {"max_requests": 120}}
