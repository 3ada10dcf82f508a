"""Tests de los endpoints HTTP de health."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from push_api.core.monitoring.health import HealthStatus
from push_api.endpoints.health import create_app

STATS = {
    "started_at": "2026-01-01T00:00:00+00:00",
    "total_published": 12,
    "last_publish_time": None,
    "errors": 1,
    "uptime": 30,
    "is_running": True,
    "redis_connected": True,
    "mqtt_connected": True,
}


def _health(redis_ready=True, mqtt_ready=True, running=True) -> dict:
    return HealthStatus(
        running=running,
        redis_ready=redis_ready,
        mqtt_ready=mqtt_ready,
        config={"poll_interval": 5000},
        stats=STATS,
    ).to_dict()


@pytest.fixture
def service():
    svc = MagicMock()
    svc.health_check.return_value = _health()
    svc.get_stats.return_value = STATS
    svc.manual_register_device.return_value = True
    return svc


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestHealthEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"redis": True, "mqtt": True}

    def test_health_degraded_is_still_200(self, client, service):
        service.health_check.return_value = _health(mqtt_ready=False)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    @pytest.mark.parametrize(
        "kwargs",
        [{"redis_ready": False}, {"mqtt_ready": False}, {"running": False}],
    )
    def test_not_ready(self, client, service, kwargs):
        service.health_check.return_value = _health(**kwargs)

        assert client.get("/ready").status_code == 503

    def test_stats(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        assert response.json()["total_published"] == 12

    def test_register(self, client, service):
        response = client.post("/device/register")

        assert response.status_code == 200
        assert response.json() == {"registered": True}
        service.manual_register_device.assert_called_once()

    def test_register_failure(self, client, service):
        service.manual_register_device.return_value = False
        assert client.post("/device/register").status_code == 503
