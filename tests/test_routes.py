import time

import pytest
from fastapi.testclient import TestClient

from pos_sync.core.config import Settings
from pos_sync.domain.entities.schemas import EntityKind
from pos_sync.main import create_app


@pytest.fixture
def client(db_url, remote):
    settings = Settings(DB_URL=db_url, CONNECTIVITY_POLL_INTERVAL=0, START_ONLINE=False, REMOTE_TIMEOUT=1.0)
    with TestClient(create_app(settings, remote=remote)) as client:
        yield client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_offline_create_is_queued_and_listed(client):
    res = client.post("/api/v1/entities/product", params={"scope_id": "c1"}, json={"name": "Tea", "price": 50, "stock": 10})

    assert res.status_code == 200
    body = res.json()
    assert body["queued"] is True
    assert body["pending"] == 1
    assert body["entity"]["id"].startswith("tmp-")

    listed = client.get("/api/v1/entities/product", params={"scope_id": "c1"}).json()
    assert [p["name"] for p in listed] == ["Tea"]

    status = client.get("/api/v1/sync/status").json()
    assert status["online"] is False
    assert status["pending"] == 1


def _wait_for_status(client, predicate):
    for _ in range(200):
        status = client.get("/api/v1/sync/status").json()
        if predicate(status):
            return status
        time.sleep(0.01)
    raise AssertionError(f"sync status never settled: {status}")


def test_reconnect_replays_queued_work(client):
    client.post("/api/v1/entities/customer", params={"scope_id": "c1"}, json={"name": "Asha"})

    status = client.post("/api/v1/sync/connectivity", json={"online": True}).json()
    assert status["online"] is True

    _wait_for_status(client, lambda s: s["pending"] == 0 and not s["replaying"])
    listed = client.get("/api/v1/entities/customer", params={"scope_id": "c1"}).json()
    assert [c["id"] for c in listed] == ["srv-1"]


def test_manual_sync_after_halted_replay(client, remote):
    remote.fail.add(("create", EntityKind.CUSTOMER))
    client.post("/api/v1/entities/customer", params={"scope_id": "c1"}, json={"name": "Asha"})
    client.post("/api/v1/sync/connectivity", json={"online": True})

    status = _wait_for_status(client, lambda s: s["last_error"] is not None and not s["replaying"])
    assert status["pending"] == 1

    remote.fail.clear()
    report = client.post("/api/v1/sync/now").json()

    assert report == {"processed": 1, "remaining": 0, "halted": False, "skipped": False, "error": None}
    assert client.get("/api/v1/sync/status").json()["last_error"] is None


def test_error_mapping(client, remote):
    assert client.post("/api/v1/entities/product", params={"scope_id": "c1"}, json={"price": 1}).status_code == 422
    assert client.patch("/api/v1/entities/product/missing", json={"price": 1}).status_code == 404
    assert client.delete("/api/v1/entities/customer/missing").status_code == 404
    assert client.get("/api/v1/entities/widget", params={"scope_id": "c1"}).status_code == 422

    client.post("/api/v1/sync/connectivity", json={"online": True})
    remote.fail.add(("create", EntityKind.PRODUCT))
    res = client.post("/api/v1/entities/product", params={"scope_id": "c1"}, json={"name": "Tea", "price": 50})

    assert res.status_code == 502
    assert client.get("/api/v1/entities/product", params={"scope_id": "c1"}).json() == []


def test_unsent_sale_is_accepted_with_its_error(client, remote):
    client.post("/api/v1/sync/connectivity", json={"online": True})
    remote.fail.add(("create", EntityKind.TRANSACTION))

    res = client.post(
        "/api/v1/entities/transaction",
        params={"scope_id": "c1"},
        json={"receipt_number": "R-0003", "total": "25"},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["queued"] is True
    assert body["pending"] == 1
    assert "rejected" in body["error"]


def test_refresh_pulls_server_collections(client, remote):
    remote.seed(EntityKind.PRODUCT, {"id": "srv-9", "company_id": "c1", "name": "Salt", "price": "5"})
    client.post("/api/v1/sync/connectivity", json={"online": True})

    result = client.post("/api/v1/sync/refresh", params={"scope_id": "c1"}).json()

    assert result == {"product": True, "customer": True, "employee": True, "transaction": True}
    listed = client.get("/api/v1/entities/product", params={"scope_id": "c1"}).json()
    assert [p["id"] for p in listed] == ["srv-9"]
