from __future__ import annotations

from fastapi import APIRouter, HTTPException

from syncbox.core.db import SessionLocal
from syncbox.models.tables import OutboxEntry
from syncbox.outbox import codec
from syncbox.outbox.store import OutboxStore
from syncbox.sync import dispatcher
from syncbox.sync.canonical import canonical_json
from syncbox.tasks.sync_tasks import build_engine

router = APIRouter()


def get_store() -> OutboxStore:
    return OutboxStore(SessionLocal)


def _row(e: OutboxEntry) -> dict:
    return {
        "id": e.id,
        "op_id": e.op_id,
        "entity_kind": e.entity_kind,
        "entity_id": e.entity_id,
        "op_kind": e.op_kind,
        "status": e.status,
        "error": e.error,
        "created_at": e.created_at,
        "last_attempt_at": e.last_attempt_at,
    }


@router.get("")
def list_outbox(limit: int = 200) -> dict:
    return {"items": [_row(e) for e in get_store().list_recent(limit=min(limit, 500))]}


@router.get("/counts")
def outbox_counts() -> dict:
    store = get_store()
    return {
        "pending": store.count_pending(),
        "failed": store.count_failed(),
        "unsynced": store.count_unsynced(),
    }


@router.get("/{entry_id}/preview")
def preview_entry(entry_id: int) -> dict:
    entry = get_store().get(entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Outbox entry not found")
    try:
        op = codec.decode(entry)
    except codec.InvalidOutboxEntry as e:
        raise HTTPException(status_code=422, detail=f"Invalid outbox payload: {e}")

    p = dispatcher.preview(op)
    return {
        "id": entry.id,
        "op_id": entry.op_id,
        "method": p.method,
        "path": p.path,
        "routable": dispatcher.is_routable(op.entity_kind, op.op_kind),
        "one_line": p.to_one_line(),
        "canonical_body": canonical_json(p.body) if p.body is not None else None,
    }


@router.post("/sync")
def sync_now(include_failed: bool = False) -> dict:
    engine = build_engine()
    res = engine.sync_all_pending() if include_failed else engine.sync_once()
    return res.as_dict()


@router.post("/{entry_id}/retry")
def retry(entry_id: int) -> dict:
    res = build_engine().retry_entry(entry_id)
    if res.message == "Entry not found":
        raise HTTPException(status_code=404, detail="Outbox entry not found")
    return res.as_dict()


@router.post("/reset-failed")
def reset_failed() -> dict:
    return {"reset": get_store().reset_failed_to_pending()}


@router.delete("/done")
def clear_done() -> dict:
    return {"deleted": get_store().clear_done()}
