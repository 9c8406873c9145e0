from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")

    from syncbox.core.db import SessionLocal, engine
    from syncbox.models.base import Base
    from syncbox.outbox.store import OutboxStore
    from syncbox.remote.reference import ReferenceRemote
    from syncbox.tasks import sync_tasks

    import syncbox.main

    Base.metadata.create_all(bind=engine)
    store = OutboxStore(SessionLocal)
    store.clear_all()
    remote = ReferenceRemote()
    sync_tasks.set_remote(remote)

    c = TestClient(syncbox.main.app)
    c._store = store  # type: ignore[attr-defined]
    c._remote = remote  # type: ignore[attr-defined]
    yield c
    store.clear_all()


def _item(item_id: int):
    from syncbox.schemas.sync_v1 import EntityKind, OpKind, PendingOperation

    return PendingOperation(
        entity_kind=EntityKind.ITEM, entity_id=str(item_id), op_kind=OpKind.UPSERT, payload={"name": "Rice", "price": 50}
    )


def _orphan_sale():
    from syncbox.schemas.sync_v1 import EntityKind, OpKind, PendingOperation

    return PendingOperation(
        entity_kind=EntityKind.TRANSACTION,
        entity_id="tx-1",
        op_kind=OpKind.CREATE_SALE,
        payload={"paymentMode": "CASH", "items": [{"itemId": 42, "qty": 1, "price": 5}]},
    )


def test_health_reports_db(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["deps"]["db"] is True
    assert data["ok"] is True
    assert data["sync_remote"] == "reference"


def test_counts_and_listing(client: TestClient):
    store = client._store  # type: ignore[attr-defined]
    store.enqueue(_item(1))
    store.enqueue(_item(2))

    assert client.get("/outbox/counts").json() == {"pending": 2, "failed": 0, "unsynced": 2}

    items = client.get("/outbox", params={"limit": 1}).json()["items"]
    assert len(items) == 1
    assert items[0]["entity_id"] == "2"
    assert items[0]["status"] == "PENDING"


def test_preview(client: TestClient):
    entry = client._store.enqueue(_item(7))  # type: ignore[attr-defined]

    r = client.get(f"/outbox/{entry.id}/preview")

    assert r.status_code == 200
    data = r.json()
    assert data["op_id"] == entry.op_id
    assert (data["method"], data["path"]) == ("PUT", "/v1/items/7")
    assert data["routable"] is True
    assert data["one_line"].startswith("Would PUT /v1/items/7 body=")
    assert data["canonical_body"] == '{"id":7,"name":"Rice","price":50.0,"reorderPoint":10}'


def test_preview_missing_entry_is_404(client: TestClient):
    assert client.get("/outbox/9999/preview").status_code == 404


def test_sync_then_retry_flow(client: TestClient):
    store = client._store  # type: ignore[attr-defined]
    remote = client._remote  # type: ignore[attr-defined]
    sale = store.enqueue(_orphan_sale())

    out = client.post("/outbox/sync").json()
    assert out["failed"] == 1
    assert client.get("/outbox/counts").json()["failed"] == 1

    store.enqueue(_item(42))
    assert client.post("/outbox/sync").json()["succeeded"] == 1

    out = client.post(f"/outbox/{sale.id}/retry").json()
    assert out["succeeded"] == 1
    assert "tx-1" in remote.transactions
    assert client.get("/outbox/counts").json() == {"pending": 0, "failed": 0, "unsynced": 0}

    assert client.delete("/outbox/done").json() == {"deleted": 2}


def test_sync_include_failed(client: TestClient):
    store = client._store  # type: ignore[attr-defined]
    store.enqueue(_orphan_sale())
    client.post("/outbox/sync")
    client._remote.items[42] = {"id": 42, "name": "Salt"}  # type: ignore[attr-defined]

    out = client.post("/outbox/sync", params={"include_failed": True}).json()

    assert out["succeeded"] == 1


def test_reset_failed(client: TestClient):
    store = client._store  # type: ignore[attr-defined]
    store.enqueue(_orphan_sale())
    client.post("/outbox/sync")

    assert client.post("/outbox/reset-failed").json() == {"reset": 1}
    assert client.get("/outbox/counts").json()["pending"] == 1


def test_retry_missing_entry_is_404(client: TestClient):
    assert client.post("/outbox/9999/retry").status_code == 404
