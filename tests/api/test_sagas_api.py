from fastapi.testclient import TestClient

from taskguard.services.saga_orchestrator import SagaStep


def test_get_saga(client: TestClient, services):
    services.sagas.run("order-1", "order", [SagaStep("reserve", lambda ctx: {"ok": True})])

    data = client.get("/api/v1/sagas/order-1").json()
    assert data["state"] == "COMPLETED"
    assert data["log"][0]["step"] == "reserve"
    assert data["context"]["step_results"]["reserve"] == {"ok": True}


def test_get_saga_not_found(client: TestClient):
    assert client.get("/api/v1/sagas/missing").status_code == 404


def test_stalled_sagas_empty(client: TestClient, services):
    services.sagas.repo.create_if_absent("fresh", "order", {})
    assert client.get("/api/v1/sagas/stalled").json() == {"items": []}
