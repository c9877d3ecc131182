"""Tests for the FastAPI application wiring.

Tests the REST API layer (ping, health, routing, middleware) - the payment
flows themselves are covered by the contract tests.
"""

import pytest
from fastapi.testclient import TestClient

from lyra_shared import __version__


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    from lyra_api.main import app
    return TestClient(app)


class TestHealthCheck:
    """Tests for the liveness endpoints."""

    def test_ping_returns_ok(self, client: TestClient):
        """Ping should return ok status."""
        response = client.get("/ping")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "lyra-payments-api"
        assert "timestamp" in data

    def test_health_endpoint_returns_healthy(self, client: TestClient):
        """Health router endpoint should return healthy status."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__


class TestCorsConfiguration:
    def test_cors_allows_storefront(self, client: TestClient):
        """CORS should allow the configured storefront origin."""
        response = client.options(
            "/payments/lyra/initialize",
            headers={
                "Origin": "https://shop.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://shop.example.com"


class TestCorrelationId:
    def test_generates_correlation_id(self, client: TestClient):
        response = client.get("/ping")
        assert response.headers["X-Correlation-ID"]

    def test_echoes_incoming_correlation_id(self, client: TestClient):
        response = client.get("/ping", headers={"X-Correlation-ID": "trace-123"})
        assert response.headers["X-Correlation-ID"] == "trace-123"


class TestRoutesRegistered:
    """Tests that all expected routes are registered."""

    def test_payment_routes_registered(self):
        from lyra_api.main import app

        route_paths = set(app.openapi()["paths"])

        assert "/health" in route_paths
        assert "/payments/lyra-ipn" in route_paths
        assert "/payments/lyra/initialize" in route_paths
        assert "/payments/lyra/return/{outcome}" in route_paths

    def test_lambda_handler_exported(self):
        from mangum import Mangum

        from lyra_api.main import handler

        assert isinstance(handler, Mangum)

    def test_replaces_malformed_correlation_id(self, client: TestClient):
        response = client.get("/ping", headers={"X-Correlation-ID": "not valid\tid"})
        assert response.headers["X-Correlation-ID"] != "not valid\tid"
