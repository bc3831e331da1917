from fastapi.testclient import TestClient


def test_open_and_close_circuit(client: TestClient, published):
    opened = client.post("/api/v1/circuits/payments/open").json()
    assert opened["state"] == "OPEN"
    assert opened["failure_threshold"] == 3

    closed = client.post("/api/v1/circuits/payments/close").json()
    assert closed["state"] == "CLOSED"
    assert [e["to_state"] for e in published("circuit.state_changed")] == ["OPEN", "CLOSED"]


def test_list_circuits(client: TestClient):
    client.get("/api/v1/circuits/catalog")
    client.post("/api/v1/circuits/messaging/open")

    items = {i["name"]: i["state"] for i in client.get("/api/v1/circuits").json()["items"]}
    assert items == {"catalog": "CLOSED", "messaging": "OPEN"}
