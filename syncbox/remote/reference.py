from __future__ import annotations

import copy
import logging
import re
import threading
from typing import Callable

from syncbox.schemas.sync_v1 import API_VERSION, RemoteResult, RequestPreview, SyncEnvelope
from syncbox.sync.canonical import as_float, as_int
from syncbox.sync.dispatcher import BASE

log = logging.getLogger("reference_remote")

# Handler returns an error string, or None after it has applied the change.
Handler = Callable[["ReferenceRemote", re.Match, dict | None], "str | None"]


def _text(body: dict, key: str) -> str:
    v = body.get(key)
    return "" if v is None else str(v).strip()


def _positive(body: dict, key: str) -> int | None:
    i = as_int(body.get(key))
    return i if i is not None and i > 0 else None


class ReferenceRemote:
    """Deterministic in-memory remote for development and tests.

    - opId is the idempotency key: a replay of an applied op is acknowledged and ignored.
    - Keeps a small projection (items, parties, transactions) so cross-entity
      references can be checked, e.g. a sale line must point at an item the remote
      has already seen.
    - A rejected envelope changes nothing and is not remembered, so a corrected
      retry with the same opId is accepted later.

    dedup, validation, apply and mark-seen run under one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.seen_op_ids: dict[str, None] = {}
        self.items: dict[int, dict] = {}
        self.parties: dict[int, dict] = {}
        self.transactions: dict[str, dict] = {}

    def apply(self, envelope: SyncEnvelope, preview: RequestPreview) -> RemoteResult:
        with self._lock:
            if envelope.op_id in self.seen_op_ids:
                return RemoteResult(ok=True, message=f"Idempotent replay: already applied opId={envelope.op_id}")

            err = self._check_envelope(envelope)
            if err is None:
                err = self._apply_route(preview, envelope.body)
            if err is not None:
                log.info("Rejected opId=%s %s %s: %s", envelope.op_id, preview.method, preview.path, err)
                return RemoteResult(ok=False, message=f"Reference remote rejected: {err}")

            self.seen_op_ids[envelope.op_id] = None
            return RemoteResult(ok=True, message=f"Reference remote accepted {preview.method} {preview.path}")

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "items": copy.deepcopy(self.items),
                "parties": copy.deepcopy(self.parties),
                "transactions": copy.deepcopy(self.transactions),
                "seen_op_ids": list(self.seen_op_ids),
            }

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "items": len(self.items),
                "parties": len(self.parties),
                "transactions": len(self.transactions),
                "seen_op_ids": len(self.seen_op_ids),
            }

    # --- validation -----------------------------------------------------------

    @staticmethod
    def _check_envelope(envelope: SyncEnvelope) -> str | None:
        if envelope.api_version != API_VERSION:
            return f"Unsupported apiVersion={envelope.api_version}"
        if not (envelope.device_id or "").strip():
            return "Missing deviceId"
        if not (envelope.op_id or "").strip():
            return "Missing opId"
        return None

    def _apply_route(self, preview: RequestPreview, body: dict | None) -> str | None:
        for method, pattern, handler in _ROUTES:
            if preview.method != method:
                continue
            m = pattern.fullmatch(preview.path)
            if m:
                return handler(self, m, body)
        return f"Unsupported route {preview.method} {preview.path}"

    def _check_lines(self, items: list, label: str) -> str | None:
        if not items:
            return f"{label} is empty"
        for i, line in enumerate(items):
            if not isinstance(line, dict):
                return f"{label}[{i}] not an object"
            qty = as_int(line.get("qty"))
            if qty is None or qty <= 0:
                return f"{label}[{i}].qty invalid"
            price = as_float(line.get("price"))
            if price is None or price < 0.0:
                return f"{label}[{i}].price invalid"
            item_id = _positive(line, "itemId")
            if item_id is not None:
                if item_id not in self.items:
                    return f"{label}[{i}].itemId={item_id} not synced yet"
            elif not _text(line, "name"):
                return f"{label}[{i}] needs itemId or name"
        return None

    def _known_vendor(self, vendor_id: int) -> str | None:
        vendor = self.parties.get(vendor_id)
        if vendor is None:
            return f"Unknown vendorId={vendor_id} (not synced yet)"
        if vendor.get("type") != "VENDOR":
            return f"vendorId={vendor_id} is not type=VENDOR"
        return None

    # --- items ----------------------------------------------------------------

    def _put_item(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        item_id = _positive(body, "id")
        if item_id is None:
            return "Missing/invalid item.id"
        if not _text(body, "name"):
            return "Missing item.name"
        self.items[item_id] = copy.deepcopy(body)
        return None

    def _delete_item(self, m: re.Match, body: dict | None) -> str | None:
        item_id = as_int(m.group("id"))
        if item_id is None:
            return "Invalid item id in path"
        self.items.pop(item_id, None)
        return None

    # --- parties --------------------------------------------------------------

    def _put_party(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        party_id = _positive(body, "id")
        if party_id is None:
            return "Missing/invalid party.id"
        if not _text(body, "name"):
            return "Missing party.name"
        party_type = _text(body, "type")
        if party_type not in ("CUSTOMER", "VENDOR"):
            return f"Invalid party.type='{party_type}'"
        self.parties[party_id] = copy.deepcopy(body)
        return None

    def _create_party(self, party_type: str, body: dict | None) -> str | None:
        label = party_type.lower()
        if body is None:
            return "Missing body"
        party_id = _positive(body, "id")
        if party_id is None:
            return f"Missing/invalid {label}.id"
        if not _text(body, "phone"):
            return f"Missing {label}.phone"
        if not _text(body, "name"):
            return f"Missing {label}.name"
        stored = copy.deepcopy(body)
        stored["type"] = party_type
        self.parties[party_id] = stored
        return None

    def _post_customer(self, m: re.Match, body: dict | None) -> str | None:
        return self._create_party("CUSTOMER", body)

    def _post_vendor(self, m: re.Match, body: dict | None) -> str | None:
        return self._create_party("VENDOR", body)

    def _delete_party(self, m: re.Match, body: dict | None) -> str | None:
        party_id = as_int(m.group("id"))
        if party_id is None:
            return "Invalid party id in path"
        self.parties.pop(party_id, None)
        return None

    # --- transactions ---------------------------------------------------------

    def _post_sale(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        local_id = _text(body, "localId")
        if not local_id:
            return "Missing sale.localId"
        if not _text(body, "paymentMode"):
            return "Missing sale.paymentMode"
        customer_id = _positive(body, "customerId")
        if customer_id is not None and customer_id not in self.parties:
            return f"Unknown customerId={customer_id} (not synced yet)"
        items = body.get("items")
        if not isinstance(items, list):
            return "Missing sale.items[]"
        err = self._check_lines(items, "sale.items")
        if err:
            return err
        self.transactions[local_id] = copy.deepcopy(body)
        return None

    def _post_payment(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        local_id = _text(body, "localId")
        if not local_id:
            return "Missing payment.localId"
        party_id = _positive(body, "partyId")
        if party_id is None:
            return "Missing/invalid payment.partyId"
        if party_id not in self.parties:
            return f"Unknown partyId={party_id} (not synced yet)"
        self.transactions[local_id] = copy.deepcopy(body)
        return None

    def _post_vendor_purchase(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        local_id = _text(body, "localId")
        if not local_id:
            return "Missing vendor_purchase.localId"
        vendor_id = _positive(body, "vendorId")
        if vendor_id is None:
            return "Missing/invalid vendorId"
        err = self._known_vendor(vendor_id)
        if err:
            return err
        self.transactions[local_id] = copy.deepcopy(body)
        return None

    def _post_expense(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        local_id = _text(body, "localId")
        if not local_id:
            return "Missing expense.localId"
        vendor_id = _positive(body, "vendorId")
        if vendor_id is not None:
            err = self._known_vendor(vendor_id)
            if err:
                return err
        self.transactions[local_id] = copy.deepcopy(body)
        return None

    def _post_line_set(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        local_id = m.group("id")
        tx = self.transactions.get(local_id)
        if tx is None:
            return f"Unknown transaction localId={local_id} (not synced yet)"
        items = body.get("items")
        if not isinstance(items, list):
            return "Missing items[]"
        err = self._check_lines(items, "items")
        if err:
            return err
        tx["items"] = copy.deepcopy(items)
        return None

    def _put_transaction(self, m: re.Match, body: dict | None) -> str | None:
        if body is None:
            return "Missing body"
        self.transactions[m.group("id")] = copy.deepcopy(body)
        return None

    def _set_transaction_status(self, status: str, m: re.Match) -> str | None:
        tx = self.transactions.get(m.group("id"))
        if tx is None:
            return f"Unknown transaction localId={m.group('id')} (not synced yet)"
        tx["status"] = status
        return None

    def _post_finalize(self, m: re.Match, body: dict | None) -> str | None:
        return self._set_transaction_status("FINAL", m)

    def _post_void(self, m: re.Match, body: dict | None) -> str | None:
        return self._set_transaction_status("VOID", m)

    def _post_adjustment(self, m: re.Match, body: dict | None) -> str | None:
        tx = self.transactions.get(m.group("id"))
        if tx is None:
            return f"Unknown transaction localId={m.group('id')} (not synced yet)"
        if body is None:
            return "Missing body"
        tx.setdefault("adjustments", []).append(copy.deepcopy(body))
        return None

    def _delete_transaction(self, m: re.Match, body: dict | None) -> str | None:
        self.transactions.pop(m.group("id"), None)
        return None

    # --- reminders ------------------------------------------------------------

    def _accept(self, m: re.Match, body: dict | None) -> str | None:
        # Reminders are acknowledged but not projected.
        return None


_SEG = r"(?P<id>(?!_unsupported_)[^/]+)"


def _r(template: str) -> re.Pattern:
    return re.compile(re.escape(BASE) + template.replace("{id}", _SEG))


# Order matters: fixed transaction paths before the /transactions/{id} patterns.
_ROUTES: list[tuple[str, re.Pattern, Handler]] = [
    ("PUT", _r("/items/{id}"), ReferenceRemote._put_item),
    ("DELETE", _r("/items/{id}"), ReferenceRemote._delete_item),
    ("PUT", _r("/parties/{id}"), ReferenceRemote._put_party),
    ("DELETE", _r("/parties/{id}"), ReferenceRemote._delete_party),
    ("POST", _r("/customers"), ReferenceRemote._post_customer),
    ("POST", _r("/vendors"), ReferenceRemote._post_vendor),
    ("POST", _r("/transactions/sale"), ReferenceRemote._post_sale),
    ("POST", _r("/transactions/payment"), ReferenceRemote._post_payment),
    ("POST", _r("/transactions/vendor_purchase"), ReferenceRemote._post_vendor_purchase),
    ("POST", _r("/transactions/expense"), ReferenceRemote._post_expense),
    ("POST", _r("/transactions/{id}/items"), ReferenceRemote._post_line_set),
    ("POST", _r("/transactions/{id}/finalize"), ReferenceRemote._post_finalize),
    ("POST", _r("/transactions/{id}/void"), ReferenceRemote._post_void),
    ("POST", _r("/transactions/{id}/adjustments"), ReferenceRemote._post_adjustment),
    ("PUT", _r("/transactions/{id}"), ReferenceRemote._put_transaction),
    ("DELETE", _r("/transactions/{id}"), ReferenceRemote._delete_transaction),
    ("POST", _r("/reminders"), ReferenceRemote._accept),
    ("DELETE", _r("/reminders/{id}"), ReferenceRemote._accept),
    ("POST", _r("/reminders/{id}/done"), ReferenceRemote._accept),
]
