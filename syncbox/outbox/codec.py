from __future__ import annotations

import json

from syncbox.models.tables import OutboxEntry
from syncbox.schemas.sync_v1 import EntityKind, OpKind, PendingOperation


class InvalidOutboxEntry(ValueError):
    pass


def encode_payload(payload: dict | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def decode(entry: OutboxEntry) -> PendingOperation:
    """Turn a stored row back into a typed op.

    Raises InvalidOutboxEntry for unknown kinds or a payload that is not a JSON object.
    """

    try:
        entity_kind = EntityKind(entry.entity_kind)
        op_kind = OpKind(entry.op_kind)
    except ValueError as e:
        raise InvalidOutboxEntry(f"unknown kind: {e}") from e

    payload = None
    raw = (entry.payload_json or "").strip()
    if raw:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidOutboxEntry(f"payload is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidOutboxEntry("payload is not a JSON object")

    return PendingOperation(entity_kind=entity_kind, entity_id=entry.entity_id, op_kind=op_kind, payload=payload)
