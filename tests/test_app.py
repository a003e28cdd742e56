"""Tests for the application endpoints and middleware wiring."""

import pytest
from fastapi.testclient import TestClient

from edge.app.core.config import settings
from edge.app.main import create_app
from edge.app.services.monitoring import CheckStatus

ADMIN_TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture(autouse=True)
def production_settings(monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
    monkeypatch.setattr(settings, "rate_limit_enabled", True)
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    monkeypatch.setattr(settings, "rate_limit_algorithm", "fixed_window")
    monkeypatch.setattr(settings, "sentry_dsn", "")
    monkeypatch.setattr(settings, "debug", False)


@pytest.fixture
def app():
    app = create_app()

    @app.get("/api/boom")
    async def boom():
        raise RuntimeError("database exploded")

    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


class TestHealthEndpoint:
    """Tests for GET /api/health."""

    def test_healthy(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == settings.app_version
        assert data["uptime"] >= 0
        assert {"name": "rate_limit_store", "status": "pass"}.items() <= data["checks"][0].items()

    def test_degraded_is_still_ok(self, app, client):
        async def cache_check():
            return CheckStatus.WARN

        app.state.monitoring.health.register("cache", cache_check)

        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_unhealthy_returns_503(self, app, client):
        async def database_check():
            raise ConnectionError("connection refused")

        app.state.monitoring.health.register("database", database_check)

        response = client.get("/api/health")
        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        failed = [check for check in data["checks"] if check["name"] == "database"][0]
        assert failed["message"] == "connection refused"

    def test_health_needs_no_token(self, client):
        assert client.get("/api/health").status_code == 200


class TestAdminAuth:
    """Tests for admin token checks on operational endpoints."""

    @pytest.mark.parametrize("path", ["/api/metrics", "/api/logs", "/api/errors", "/api/admin/blocklist"])
    def test_missing_token_rejected(self, client, path):
        assert client.get(path).status_code == 401

    def test_wrong_token_rejected(self, client):
        response = client.get("/api/metrics", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

    def test_unconfigured_token_rejects_everyone(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", "")
        response = client.get("/api/metrics", headers={"Authorization": "Bearer anything"})
        assert response.status_code == 401

    def test_non_ascii_token_rejected(self, client):
        response = client.get("/api/metrics", headers={"Authorization": "Bearer caf\u00e9".encode("latin-1")})
        assert response.status_code == 401

    def test_development_skips_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")
        assert client.get("/api/metrics").status_code == 200


class TestMetricsEndpoint:
    """Tests for GET /api/metrics."""

    def test_summary(self, client):
        client.get("/api/health")

        response = client.get("/api/metrics", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["counters"]["requests.total"] >= 2
        assert data["counters"]["requests.get"] >= 2
        assert data["counters"]["responses.2xx"] >= 1
        assert data["histograms"]["response.time"]["count"] >= 1
        assert set(data["histograms"]["response.time"]) == {"count", "avg", "p50", "p95", "p99"}

    def test_prometheus_format(self, client):
        client.get("/api/health")

        response = client.get("/api/metrics?format=prometheus", headers=AUTH)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "# TYPE edge_requests_total_total counter" in response.text

    def test_unknown_format_rejected(self, client):
        assert client.get("/api/metrics?format=xml", headers=AUTH).status_code == 422


class TestLogsEndpoint:
    """Tests for GET /api/logs."""

    def test_recent_logs(self, client):
        client.get("/api/health")

        response = client.get("/api/logs", headers=AUTH)

        assert response.status_code == 200
        messages = [entry["message"] for entry in response.json()["logs"]]
        assert "Request completed" in messages

    def test_count_limits_entries(self, client):
        for _ in range(3):
            client.get("/api/health")

        response = client.get("/api/logs?count=1", headers=AUTH)
        assert len(response.json()["logs"]) == 1

    def test_count_capped_at_hundred(self, app, client):
        for i in range(120):
            app.state.monitoring.logger.info(f"entry {i}")

        response = client.get("/api/logs?count=500", headers=AUTH)
        assert len(response.json()["logs"]) == 100


class TestErrorsEndpoint:
    """Tests for unhandled errors and GET /api/errors."""

    def test_unhandled_exception_returns_generic_500(self, client):
        response = client.get("/api/boom")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "internal_error"
        assert data["message"] == "Internal server error"
        assert "database exploded" not in response.text
        assert "Traceback" not in response.text

    def test_debug_includes_exception_message(self, client, monkeypatch):
        monkeypatch.setattr(settings, "debug", True)

        data = client.get("/api/boom").json()

        assert data["message"] == "database exploded"
        assert data["exception_type"] == "RuntimeError"

    def test_unhandled_exception_is_tracked(self, client):
        client.get("/api/boom", headers={"X-Request-ID": "req-42"})

        response = client.get("/api/errors", headers=AUTH)

        assert response.status_code == 200
        errors = response.json()["errors"]
        assert errors[-1]["error"] == {"name": "RuntimeError", "message": "database exploded"}
        assert errors[-1]["context"]["path"] == "/api/boom"
        assert errors[-1]["context"]["request_id"] == "req-42"

    def test_unhandled_exception_is_counted(self, app, client):
        client.get("/api/boom")
        assert app.state.monitoring.metrics.get_counter("requests.errors") == 1


class TestBlocklistEndpoints:
    """Tests for the admin blocklist endpoints."""

    BLOCKED = {"CF-Connecting-IP": "203.0.113.9"}

    def test_block_and_unblock(self, client):
        response = client.post(
            "/api/admin/blocklist",
            json={"ip": "203.0.113.9", "duration_seconds": 600},
            headers=AUTH,
        )
        assert response.status_code == 201
        assert response.json()["ip"] == "203.0.113.9"

        blocked = client.get("/api/health", headers=self.BLOCKED)
        assert blocked.status_code == 403
        assert blocked.json()["error"] == "ip_blocked"
        assert blocked.json()["retryAfter"] == 600

        listing = client.get("/api/admin/blocklist", headers=AUTH).json()
        assert [entry["ip"] for entry in listing["blocked"]] == ["203.0.113.9"]

        response = client.delete("/api/admin/blocklist/203.0.113.9", headers=AUTH)
        assert response.status_code == 200
        assert client.get("/api/health", headers=self.BLOCKED).status_code == 200

    def test_unblock_unknown_ip(self, client):
        response = client.delete("/api/admin/blocklist/198.51.100.1", headers=AUTH)
        assert response.status_code == 404

    def test_invalid_duration_rejected(self, client):
        response = client.post(
            "/api/admin/blocklist",
            json={"ip": "203.0.113.9", "duration_seconds": 0},
            headers=AUTH,
        )
        assert response.status_code == 422

    def test_block_requires_token(self, client):
        response = client.post("/api/admin/blocklist", json={"ip": "203.0.113.9"})
        assert response.status_code == 401

    def test_blocked_request_is_counted(self, app, client):
        app.state.blocklist.block("203.0.113.9")
        client.get("/api/health", headers=self.BLOCKED)

        metrics = app.state.monitoring.metrics
        assert metrics.get_counter("ratelimit.blocked") == 1
        assert metrics.get_counter("responses.4xx") == 1


class TestRateLimitWiring:
    """Tests for the default policies on the application."""

    def test_rate_limit_headers(self, client):
        response = client.get("/api/health")

        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "59"
        assert "X-Request-ID" in response.headers

    def test_auth_policy_enforced(self, app, client):
        for _ in range(10):
            assert client.post("/api/auth/login").status_code == 404

        response = client.post("/api/auth/login")

        assert response.status_code == 429
        assert response.json() == {
            "error": "rate_limit_exceeded",
            "message": "Too many authentication attempts. Please try again in 15 minutes.",
            "retryAfter": 900,
        }
        assert response.headers["Retry-After"] == "900"
        assert app.state.monitoring.metrics.get_counter("ratelimit.rejected") == 1

    def test_rate_limiting_can_be_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_enabled", False)
        client = TestClient(create_app())

        response = client.get("/api/health")
        assert "X-RateLimit-Limit" not in response.headers
