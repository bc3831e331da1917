from fastapi.testclient import TestClient
import requests

from taskguard.config import SERVICES
from taskguard.models.enums import DeadLetterReason


def test_get_health(client: TestClient):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_health_services_endpoint(client: TestClient, requests_mock):
    for service_name, conf in SERVICES.items():
        url = conf["base_url"].rstrip("/") + conf.get("health_path", "/health")
        requests_mock.get(url, status_code=200)

    response = client.get("/api/v1/health/services")
    assert response.status_code == 200
    payload = response.json()

    assert set(payload.keys()) == set(SERVICES.keys())
    for service_name in SERVICES.keys():
        assert payload[service_name]["ok"] is True
        assert payload[service_name]["status_code"] == 200
        assert payload[service_name]["circuit"] == "CLOSED"


def test_health_services_unreachable(client: TestClient, requests_mock):
    for conf in SERVICES.values():
        url = conf["base_url"].rstrip("/") + conf.get("health_path", "/health")
        requests_mock.get(url, exc=requests.ConnectionError("refused"))
    client.post("/api/v1/circuits/payments/open")

    payload = client.get("/api/v1/health/services").json()
    assert payload["payments"]["ok"] is False
    assert payload["payments"]["circuit"] == "OPEN"


def test_queue_health_is_healthy_when_idle(client: TestClient):
    response = client.get("/api/v1/health/queue")
    assert response.status_code == 200
    payload = response.json()

    assert payload["status"] == "healthy"
    assert payload["alerts"] == []
    assert payload["dead_letter"]["pending"] == 0
    assert payload["circuits"]["open"] == []
    assert payload["throughput"] == {"dead_lettered_last_hour": 0, "dead_lettered_last_day": 0}


def test_queue_health_warns_on_open_circuit_and_dead_letter_backlog(client: TestClient, services, mocker):
    mocker.patch.dict("taskguard.services.job_monitor.QUEUE_HEALTH_THRESHOLDS", {"dlq_pending": 1})
    for order_id in range(2):
        services.dead_letters.add("recording", {"order_id": order_id}, DeadLetterReason.EXCEPTION, "boom")
    client.post("/api/v1/circuits/payments/open")

    payload = client.get("/api/v1/health/queue").json()

    assert payload["status"] == "warning"
    assert [c["name"] for c in payload["circuits"]["open"]] == ["payments"]
    assert payload["throughput"]["dead_lettered_last_hour"] == 2
    assert len(payload["alerts"]) == 2
    assert any("Dead letter queue has 2 pending" in alert for alert in payload["alerts"])
    assert any("circuit(s) not closed" in alert for alert in payload["alerts"])
