"""Tests for request ID middleware."""

import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from edge.app.middleware.request_id import RequestIdMiddleware, get_request_id


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {"request_id": get_request_id(request)}

    return TestClient(app)


class TestRequestIdMiddleware:
    """Test RequestIdMiddleware."""

    def test_generates_request_id(self, client):
        response = client.get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert uuid.UUID(request_id)
        assert response.json()["request_id"] == request_id

    def test_honours_incoming_request_id(self, client):
        response = client.get("/echo", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_get_request_id_without_middleware(self):
        app = FastAPI()

        @app.get("/echo")
        async def echo(request: Request):
            return {"request_id": get_request_id(request)}

        assert TestClient(app).get("/echo").json()["request_id"] == "unknown"
