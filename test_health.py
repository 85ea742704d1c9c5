"""
Tests for the health listener.

Tests cover:
- GET /health when the database answers and when it does not
- GET /metrics exposition content
- API listener does not serve the health routes
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from conftest import auth_headers
from message_service.main import app, get_health_service, health_app
from message_service.ports import HealthRepository
from message_service.services import HealthService


class UnreachableRepository(HealthRepository):
    def ping(self) -> bool:
        return False


@pytest.fixture(scope="function")
def health_client(db):
    with TestClient(health_app) as test_client:
        yield test_client
    health_app.dependency_overrides.clear()


class TestHealth:
    """Test GET /health."""

    def test_healthy(self, health_client):
        response = health_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_status"] == "connected"
        assert data["timestamp"]

    def test_unhealthy_returns_503(self, health_client):
        health_app.dependency_overrides[get_health_service] = lambda: HealthService(UnreachableRepository())

        response = health_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database_status"] == "disconnected"

    def test_health_not_on_api_listener(self, db):
        with TestClient(app) as client:
            assert client.get("/health").status_code == 404


class TestMetrics:
    """Test GET /metrics."""

    def test_metrics_exposition(self, health_client):
        response = health_client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

    def test_message_operations_counted(self, health_client, db):
        with TestClient(app) as client:
            client.post(
                "/messages",
                json={"channel_id": str(uuid.uuid4()), "content": "count me"},
                headers=auth_headers(uuid.uuid4()),
            )

        body = health_client.get("/metrics").text

        assert "http_requests_total" in body
        assert 'message_operations_total{operation="create",result="ok"}' in body
        assert 'outbox_writes_total{result="written"}' in body
