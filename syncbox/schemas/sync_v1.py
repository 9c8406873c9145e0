from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

API_VERSION = 1


class EntityKind(str, Enum):
    ITEM = "ITEM"
    PARTY = "PARTY"
    TRANSACTION = "TRANSACTION"
    TRANSACTION_LINE_SET = "TRANSACTION_LINE_SET"
    REMINDER = "REMINDER"


class OpKind(str, Enum):
    UPSERT = "UPSERT"
    DELETE = "DELETE"
    UPSERT_MANY = "UPSERT_MANY"
    MARK_DONE = "MARK_DONE"
    CREATE_SALE = "CREATE_SALE"
    CREATE_PAYMENT = "CREATE_PAYMENT"
    CREATE_VENDOR_PURCHASE = "CREATE_VENDOR_PURCHASE"
    CREATE_EXPENSE = "CREATE_EXPENSE"
    UPSERT_CUSTOMER = "UPSERT_CUSTOMER"
    UPSERT_VENDOR = "UPSERT_VENDOR"
    EDIT_TRANSACTION = "EDIT_TRANSACTION"
    FINALIZE_TRANSACTION = "FINALIZE_TRANSACTION"
    VOID_TRANSACTION = "VOID_TRANSACTION"
    CREATE_ADJUSTMENT = "CREATE_ADJUSTMENT"


class EntryStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class PendingOperation(BaseModel):
    """A mutation the business layer wants delivered to the remote."""

    entity_kind: EntityKind
    entity_id: str | None = None
    op_kind: OpKind
    payload: dict[str, Any] | None = None


class SyncEnvelope(BaseModel):
    """Versioned wire document; one per delivery attempt."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: int = Field(default=API_VERSION, alias="apiVersion")
    device_id: str = Field(alias="deviceId")
    op_id: str = Field(alias="opId")
    sent_at_millis: int = Field(alias="sentAtMillis")
    entity_kind: str = Field(alias="entityType")
    entity_id: str | None = Field(default=None, alias="entityId")
    op_kind: str = Field(alias="op")
    body: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class RequestPreview:
    method: str
    path: str
    body: dict[str, Any] | None = None

    def to_one_line(self, max_chars: int = 900) -> str:
        body_str = json.dumps(self.body, ensure_ascii=False, separators=(",", ":")) if self.body is not None else "null"
        raw = f"Would {self.method} {self.path} body={body_str}"
        return raw if len(raw) <= max_chars else raw[:max_chars] + "…"


@dataclass(frozen=True)
class RemoteResult:
    ok: bool
    message: str
