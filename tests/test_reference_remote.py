from __future__ import annotations

import threading

from syncbox.remote.reference import ReferenceRemote
from syncbox.schemas.sync_v1 import EntityKind, OpKind, PendingOperation, SyncEnvelope
from syncbox.sync import dispatcher


def _pair(op: PendingOperation, op_id: str, **overrides):
    env = dispatcher.envelope(op, op_id=op_id, device_id="dev-1", sent_at_millis=1)
    if overrides:
        env = env.model_copy(update=overrides)
    return env, dispatcher.preview(op)


def _item(item_id: int, name: str = "Rice") -> PendingOperation:
    return PendingOperation(
        entity_kind=EntityKind.ITEM, entity_id=str(item_id), op_kind=OpKind.UPSERT, payload={"name": name, "price": 50}
    )


def _sale(local_id: str, item_id: int, **extra) -> PendingOperation:
    payload = {"paymentMode": "CASH", "amount": 50, "items": [{"itemId": item_id, "qty": 1, "price": 50}], **extra}
    return PendingOperation(
        entity_kind=EntityKind.TRANSACTION, entity_id=local_id, op_kind=OpKind.CREATE_SALE, payload=payload
    )


def _party(party_id: int, op_kind: OpKind, **payload) -> PendingOperation:
    return PendingOperation(entity_kind=EntityKind.PARTY, entity_id=str(party_id), op_kind=op_kind, payload=payload)


def test_replay_is_acknowledged_without_mutation():
    remote = ReferenceRemote()
    env, preview = _pair(_item(7), "op-1")

    first = remote.apply(env, preview)
    after_first = remote.snapshot()

    for _ in range(3):
        again = remote.apply(env, preview)
        assert again.ok is True
        assert "Idempotent replay" in again.message

    assert first.ok is True
    assert remote.snapshot() == after_first
    assert remote.items[7]["name"] == "Rice"


def test_replay_with_same_op_id_ignores_new_body():
    remote = ReferenceRemote()
    env, preview = _pair(_item(7, "Rice"), "op-1")
    remote.apply(env, preview)

    env2, preview2 = _pair(_item(7, "Basmati"), "op-1")
    res = remote.apply(env2, preview2)

    assert res.ok is True
    assert remote.items[7]["name"] == "Rice"


def test_same_envelope_twice_leaves_counts_unchanged():
    remote = ReferenceRemote()
    remote.apply(*_pair(_item(1), "op-item"))
    remote.apply(*_pair(_party(2, OpKind.UPSERT_CUSTOMER, name="Asha", phone="98"), "op-party"))
    env, preview = _pair(_sale("tx-1", 1, customerId=2), "op-sale")

    r1 = remote.apply(env, preview)
    c1 = remote.counts()
    r2 = remote.apply(env, preview)
    c2 = remote.counts()

    assert r1.ok and r2.ok
    assert "Idempotent replay" in r2.message
    assert c1 == c2 == {"items": 1, "parties": 1, "transactions": 1, "seen_op_ids": 3}


def test_envelope_validation_rejects_without_marking_seen():
    remote = ReferenceRemote()

    bad_version = remote.apply(*_pair(_item(1), "op-1", api_version=2))
    blank_device = remote.apply(*_pair(_item(1), "op-1", device_id="  "))
    blank_op = remote.apply(*_pair(_item(1), "", device_id="dev-1"))

    assert not bad_version.ok and "apiVersion=2" in bad_version.message
    assert not blank_device.ok and "Missing deviceId" in blank_device.message
    assert not blank_op.ok and "Missing opId" in blank_op.message
    assert remote.counts()["seen_op_ids"] == 0

    # Same opId, now valid: accepted.
    assert remote.apply(*_pair(_item(1), "op-1")).ok


def test_sale_referencing_unsynced_item_is_gated_then_accepted():
    remote = ReferenceRemote()
    sale_env, sale_preview = _pair(_sale("tx-1", 99), "op-sale")

    rejected = remote.apply(sale_env, sale_preview)
    assert rejected.ok is False
    assert "itemId=99 not synced yet" in rejected.message
    assert remote.counts() == {"items": 0, "parties": 0, "transactions": 0, "seen_op_ids": 0}

    assert remote.apply(*_pair(_item(99), "op-item")).ok

    accepted = remote.apply(sale_env, sale_preview)
    assert accepted.ok is True
    assert "accepted POST /v1/transactions/sale" in accepted.message
    assert remote.transactions["tx-1"]["items"] == [{"itemId": 99, "qty": 1, "price": 50.0}]
    assert remote.apply(sale_env, sale_preview).message.startswith("Idempotent replay")
    assert remote.counts()["transactions"] == 1


def test_sale_with_unknown_customer_is_rejected():
    remote = ReferenceRemote()
    remote.apply(*_pair(_item(1), "op-item"))
    res = remote.apply(*_pair(_sale("tx-1", 1, customerId=5), "op-sale"))
    assert not res.ok
    assert "Unknown customerId=5 (not synced yet)" in res.message


def test_sale_line_rules():
    remote = ReferenceRemote()
    bad_qty = _sale("tx-1", 0)
    bad_qty.payload["items"] = [{"name": "Loose", "qty": 0, "price": 5}]
    no_name = _sale("tx-2", 0)
    no_name.payload["items"] = [{"qty": 1, "price": 5}]
    empty = _sale("tx-3", 0)
    empty.payload["items"] = []

    assert "qty invalid" in remote.apply(*_pair(bad_qty, "a")).message
    assert "needs itemId or name" in remote.apply(*_pair(no_name, "b")).message
    assert "is empty" in remote.apply(*_pair(empty, "c")).message


def test_party_upsert_requires_known_type():
    remote = ReferenceRemote()
    res = remote.apply(*_pair(_party(3, OpKind.UPSERT, name="X", type="FRIEND"), "op-1"))
    assert not res.ok
    assert "Invalid party.type='FRIEND'" in res.message


def test_vendor_purchase_requires_vendor_type():
    remote = ReferenceRemote()
    remote.apply(*_pair(_party(3, OpKind.UPSERT_CUSTOMER, name="Asha", phone="1"), "op-c"))
    purchase = PendingOperation(
        entity_kind=EntityKind.TRANSACTION,
        entity_id="vp-1",
        op_kind=OpKind.CREATE_VENDOR_PURCHASE,
        payload={"vendorId": 3, "amount": 100, "mode": "CASH"},
    )

    res = remote.apply(*_pair(purchase, "op-vp"))
    assert not res.ok
    assert "is not type=VENDOR" in res.message

    remote.apply(*_pair(_party(4, OpKind.UPSERT_VENDOR, name="Mills", phone="2"), "op-v"))
    purchase.payload["vendorId"] = 4
    assert remote.apply(*_pair(purchase, "op-vp")).ok


def test_expense_vendor_is_optional_but_checked_when_present():
    remote = ReferenceRemote()
    expense = PendingOperation(
        entity_kind=EntityKind.TRANSACTION, entity_id="ex-1", op_kind=OpKind.CREATE_EXPENSE, payload={"amount": 10}
    )
    assert remote.apply(*_pair(expense, "op-1")).ok

    expense2 = expense.model_copy(update={"entity_id": "ex-2", "payload": {"amount": 10, "vendorId": 8}})
    res = remote.apply(*_pair(expense2, "op-2"))
    assert not res.ok
    assert "Unknown vendorId=8" in res.message


def test_line_set_and_lifecycle_ops_need_known_transaction():
    remote = ReferenceRemote()
    line_set = PendingOperation(
        entity_kind=EntityKind.TRANSACTION_LINE_SET,
        entity_id="tx-1",
        op_kind=OpKind.UPSERT_MANY,
        payload={"items": [{"name": "Loose", "qty": 2, "price": 3}]},
    )
    void = PendingOperation(entity_kind=EntityKind.TRANSACTION, entity_id="tx-1", op_kind=OpKind.VOID_TRANSACTION)

    assert "Unknown transaction localId=tx-1" in remote.apply(*_pair(line_set, "op-ls")).message

    remote.apply(*_pair(_item(1), "op-item"))
    remote.apply(*_pair(_sale("tx-1", 1), "op-sale"))

    assert remote.apply(*_pair(line_set, "op-ls")).ok
    assert remote.apply(*_pair(void, "op-void")).ok
    tx = remote.transactions["tx-1"]
    assert tx["items"] == [{"name": "Loose", "qty": 2, "price": 3.0}]
    assert tx["status"] == "VOID"


def test_delete_removes_from_projection():
    remote = ReferenceRemote()
    remote.apply(*_pair(_item(5), "op-1"))
    delete = PendingOperation(entity_kind=EntityKind.ITEM, entity_id="5", op_kind=OpKind.DELETE)
    assert remote.apply(*_pair(delete, "op-2")).ok
    assert 5 not in remote.items


def test_unsupported_route_is_rejected():
    remote = ReferenceRemote()
    op = PendingOperation(entity_kind=EntityKind.ITEM, entity_id="1", op_kind=OpKind.MARK_DONE, payload={"x": 1})
    res = remote.apply(*_pair(op, "op-1"))
    assert not res.ok
    assert "Unsupported route POST /v1/items/_unsupported_mark_done" in res.message


def test_reminders_are_accepted_without_state():
    remote = ReferenceRemote()
    op = PendingOperation(entity_kind=EntityKind.REMINDER, entity_id="r1", op_kind=OpKind.MARK_DONE)
    assert remote.apply(*_pair(op, "op-1")).ok
    assert remote.counts() == {"items": 0, "parties": 0, "transactions": 0, "seen_op_ids": 1}


def test_concurrent_apply_of_same_op_id_applies_once():
    remote = ReferenceRemote()
    env, preview = _pair(_item(7), "op-race")
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(remote.apply(env, preview))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(r.ok for r in results)
    assert sum(1 for r in results if r.message.startswith("Reference remote accepted")) == 1
    assert sum(1 for r in results if r.message.startswith("Idempotent replay")) == 7


def test_instances_do_not_share_state():
    a, b = ReferenceRemote(), ReferenceRemote()
    a.apply(*_pair(_item(1), "op-1"))
    assert b.counts()["items"] == 0
    assert isinstance(_pair(_item(1), "x")[0], SyncEnvelope)
