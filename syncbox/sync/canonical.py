"""Canonical wire bodies for outbox operations.

Each (entity kind, op kind) variant has exactly one mapper producing a dict
with stable field names. Values are coerced to their declared types and
absent/None values are stripped recursively, so repeated canonicalization of
the same operation always yields the same document. Variants without a mapper
fall back to the raw payload with nulls stripped.
"""

from __future__ import annotations

import copy
import json
import math
from typing import Any, Callable

from syncbox.schemas.sync_v1 import EntityKind, OpKind, PendingOperation

Mapper = Callable[[PendingOperation, dict], dict]

_MAPPERS: dict[tuple[EntityKind, OpKind], Mapper] = {}


def _mapper(entity_kind: EntityKind, op_kind: OpKind):
    def register(fn: Mapper) -> Mapper:
        _MAPPERS[(entity_kind, op_kind)] = fn
        return fn

    return register


# --- coercion -----------------------------------------------------------------


def as_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if math.isfinite(v) else None
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            f = as_float(s)
            return int(f) if f is not None else None
    return None


def as_float(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    elif isinstance(v, str):
        try:
            f = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def as_str(v: Any) -> str | None:
    if v is None or isinstance(v, (dict, list)):
        return None
    return str(v)


def as_text(v: Any) -> str | None:
    """Trimmed string; blank counts as absent."""
    s = as_str(v)
    if s is None:
        return None
    s = s.strip()
    return s or None


def strip_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: strip_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_nulls(v) for v in value if v is not None]
    return value


def _entity_int_id(op: PendingOperation, p: dict) -> int | None:
    i = as_int(op.entity_id)
    return i if i is not None else as_int(p.get("id"))


def _line_items(raw: Any) -> list[dict]:
    """Shared by every path that emits transaction lines (sale, line-set upsert)."""
    if not isinstance(raw, list):
        return []
    out: list[dict] = []
    for line in raw:
        if not isinstance(line, dict):
            continue
        out.append(
            {
                "itemId": as_int(line.get("itemId")),
                "name": as_text(line.get("name")) or as_text(line.get("itemNameSnapshot")),
                "qty": as_int(line.get("qty")),
                "price": as_float(line.get("price")),
            }
        )
    return out


# --- mappers ------------------------------------------------------------------


@_mapper(EntityKind.ITEM, OpKind.UPSERT)
def _item_upsert(op: PendingOperation, p: dict) -> dict:
    reorder_point = as_int(p.get("reorderPoint"))
    return {
        "id": _entity_int_id(op, p),
        "name": as_str(p.get("name")),
        "category": as_str(p.get("category")),
        "price": as_float(p.get("price")),
        "costPrice": as_float(p.get("costPrice")),
        "stock": as_int(p.get("stock")),
        "gstPercentage": as_float(p.get("gstPercentage")),
        "reorderPoint": 10 if reorder_point is None else reorder_point,
        "vendorId": as_int(p.get("vendorId")),
        "rackLocation": as_text(p.get("rackLocation")),
        "barcode": as_text(p.get("barcode")),
        "imageUri": as_text(p.get("imageUri")),
        "expiryDateMillis": as_int(p.get("expiryDateMillis")),
    }


@_mapper(EntityKind.PARTY, OpKind.UPSERT)
def _party_upsert(op: PendingOperation, p: dict) -> dict:
    return {
        "id": _entity_int_id(op, p),
        "type": as_str(p.get("type")),
        "name": as_str(p.get("name")),
        "phone": as_str(p.get("phone")),
        "gstNumber": as_text(p.get("gstNumber")),
        "balance": as_float(p.get("balance")),
    }


@_mapper(EntityKind.PARTY, OpKind.UPSERT_CUSTOMER)
def _customer_upsert(op: PendingOperation, p: dict) -> dict:
    # Customers never carry a GST number or an opening balance on creation.
    return {
        "id": _entity_int_id(op, p),
        "type": "CUSTOMER",
        "name": as_str(p.get("name")),
        "phone": as_str(p.get("phone")),
        "balance": 0.0,
    }


@_mapper(EntityKind.PARTY, OpKind.UPSERT_VENDOR)
def _vendor_upsert(op: PendingOperation, p: dict) -> dict:
    return {
        "id": _entity_int_id(op, p),
        "type": "VENDOR",
        "name": as_str(p.get("name")),
        "phone": as_str(p.get("phone")),
        "gstNumber": as_text(p.get("gstNumber")),
        "balance": 0.0,
    }


@_mapper(EntityKind.TRANSACTION, OpKind.CREATE_SALE)
def _sale(op: PendingOperation, p: dict) -> dict:
    return {
        "localId": op.entity_id,
        "type": "SALE",
        "paymentMode": as_str(p.get("paymentMode")),
        "customerId": as_int(p.get("customerId")),
        "amount": as_float(p.get("amount")),
        "items": _line_items(p.get("items")),
    }


@_mapper(EntityKind.TRANSACTION, OpKind.CREATE_PAYMENT)
def _payment(op: PendingOperation, p: dict) -> dict:
    return {
        "localId": op.entity_id,
        "partyId": as_int(p.get("partyId")),
        "partyType": as_str(p.get("partyType")),
        "amount": as_float(p.get("amount")),
        "mode": as_str(p.get("mode")),
    }


@_mapper(EntityKind.TRANSACTION, OpKind.CREATE_VENDOR_PURCHASE)
def _vendor_purchase(op: PendingOperation, p: dict) -> dict:
    return {
        "localId": op.entity_id,
        "vendorId": as_int(p.get("vendorId")),
        "amount": as_float(p.get("amount")),
        "mode": as_str(p.get("mode")),
        "note": as_text(p.get("note")),
    }


@_mapper(EntityKind.TRANSACTION, OpKind.CREATE_EXPENSE)
def _expense(op: PendingOperation, p: dict) -> dict:
    return {
        "localId": op.entity_id,
        "amount": as_float(p.get("amount")),
        "mode": as_str(p.get("mode")),
        "vendorId": as_int(p.get("vendorId")),
        "category": as_text(p.get("category")),
        "description": as_text(p.get("description")),
    }


@_mapper(EntityKind.TRANSACTION_LINE_SET, OpKind.UPSERT_MANY)
def _line_set(op: PendingOperation, p: dict) -> dict:
    return {
        "transactionLocalId": op.entity_id,
        "items": _line_items(p.get("items")),
    }


@_mapper(EntityKind.REMINDER, OpKind.UPSERT)
def _reminder_upsert(op: PendingOperation, p: dict) -> dict:
    return {
        "localId": op.entity_id or as_text(p.get("id")),
        "type": as_str(p.get("type")),
        "refId": as_int(p.get("refId")),
        "title": as_str(p.get("title")),
        "dueAt": as_int(p.get("dueAt")),
        "note": as_text(p.get("note")),
    }


@_mapper(EntityKind.REMINDER, OpKind.MARK_DONE)
def _reminder_done(op: PendingOperation, p: dict) -> dict:
    return {"id": op.entity_id or as_text(p.get("id"))}


# --- public API ---------------------------------------------------------------


def canonical_body(op: PendingOperation) -> dict | None:
    fn = _MAPPERS.get((op.entity_kind, op.op_kind))
    if fn is None:
        if op.payload is None:
            return None
        return strip_nulls(copy.deepcopy(op.payload))
    return strip_nulls(fn(op, op.payload or {}))


def canonical_json(body: dict | None) -> str:
    return json.dumps(body, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
