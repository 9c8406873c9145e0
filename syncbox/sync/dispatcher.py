from __future__ import annotations

from syncbox.schemas.sync_v1 import (
    API_VERSION,
    EntityKind,
    OpKind,
    PendingOperation,
    RequestPreview,
    SyncEnvelope,
)
from syncbox.sync.canonical import canonical_body
from syncbox.util.time import now_millis

BASE = "/v1"

# (method, path template, has_body). {id} is entity_id, or payload.id when missing.
_ROUTES: dict[tuple[EntityKind, OpKind], tuple[str, str, bool]] = {
    (EntityKind.ITEM, OpKind.UPSERT): ("PUT", "/items/{id}", True),
    (EntityKind.ITEM, OpKind.DELETE): ("DELETE", "/items/{id}", False),
    (EntityKind.PARTY, OpKind.UPSERT): ("PUT", "/parties/{id}", True),
    (EntityKind.PARTY, OpKind.DELETE): ("DELETE", "/parties/{id}", False),
    (EntityKind.PARTY, OpKind.UPSERT_CUSTOMER): ("POST", "/customers", True),
    (EntityKind.PARTY, OpKind.UPSERT_VENDOR): ("POST", "/vendors", True),
    (EntityKind.TRANSACTION, OpKind.DELETE): ("DELETE", "/transactions/{id}", False),
    (EntityKind.TRANSACTION, OpKind.CREATE_SALE): ("POST", "/transactions/sale", True),
    (EntityKind.TRANSACTION, OpKind.CREATE_PAYMENT): ("POST", "/transactions/payment", True),
    (EntityKind.TRANSACTION, OpKind.CREATE_VENDOR_PURCHASE): ("POST", "/transactions/vendor_purchase", True),
    (EntityKind.TRANSACTION, OpKind.CREATE_EXPENSE): ("POST", "/transactions/expense", True),
    (EntityKind.TRANSACTION, OpKind.UPSERT): ("PUT", "/transactions/{id}", True),
    (EntityKind.TRANSACTION, OpKind.EDIT_TRANSACTION): ("PUT", "/transactions/{id}", True),
    (EntityKind.TRANSACTION, OpKind.FINALIZE_TRANSACTION): ("POST", "/transactions/{id}/finalize", True),
    (EntityKind.TRANSACTION, OpKind.VOID_TRANSACTION): ("POST", "/transactions/{id}/void", True),
    (EntityKind.TRANSACTION, OpKind.CREATE_ADJUSTMENT): ("POST", "/transactions/{id}/adjustments", True),
    (EntityKind.TRANSACTION_LINE_SET, OpKind.UPSERT_MANY): ("POST", "/transactions/{id}/items", True),
    (EntityKind.REMINDER, OpKind.UPSERT): ("POST", "/reminders", True),
    (EntityKind.REMINDER, OpKind.DELETE): ("DELETE", "/reminders/{id}", False),
    (EntityKind.REMINDER, OpKind.MARK_DONE): ("POST", "/reminders/{id}/done", False),
}

# Resource segment used to build the _unsupported_ path for unknown pairs.
_RESOURCE = {
    EntityKind.ITEM: "items",
    EntityKind.PARTY: "parties",
    EntityKind.TRANSACTION: "transactions",
    EntityKind.TRANSACTION_LINE_SET: "transaction_items",
    EntityKind.REMINDER: "reminders",
}


def is_routable(entity_kind: EntityKind, op_kind: OpKind) -> bool:
    return (entity_kind, op_kind) in _ROUTES


def _path_id(op: PendingOperation) -> str:
    if op.entity_id is not None:
        return op.entity_id
    raw = (op.payload or {}).get("id")
    return "None" if raw is None else str(raw)


def preview(op: PendingOperation) -> RequestPreview:
    """Deterministic description of the remote request for an op. No I/O."""
    body = canonical_body(op)
    route = _ROUTES.get((op.entity_kind, op.op_kind))
    if route is None:
        path = f"{BASE}/{_RESOURCE[op.entity_kind]}/_unsupported_{op.op_kind.value.lower()}"
        return RequestPreview("POST", path, body)

    method, template, has_body = route
    path = BASE + template.replace("{id}", _path_id(op))
    return RequestPreview(method, path, body if has_body else None)


def envelope(
    op: PendingOperation,
    *,
    op_id: str,
    device_id: str,
    sent_at_millis: int | None = None,
) -> SyncEnvelope:
    return SyncEnvelope(
        api_version=API_VERSION,
        device_id=device_id,
        op_id=op_id,
        sent_at_millis=now_millis() if sent_at_millis is None else sent_at_millis,
        entity_kind=op.entity_kind.value,
        entity_id=op.entity_id,
        op_kind=op.op_kind.value,
        body=canonical_body(op),
    )
