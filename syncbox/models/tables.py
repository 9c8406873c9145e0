from __future__ import annotations

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from syncbox.models.base import Base


class OutboxEntry(Base):
    """One durable intent to sync a local mutation.

    Append-only except for status/last_attempt_at/error. op_id is the idempotency
    key sent to the remote and never changes once written.
    """

    __tablename__ = "sync_outbox"
    __table_args__ = (Index("ix_sync_outbox_status_created", "status", "created_at", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    op_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    entity_kind: Mapped[str] = mapped_column(String(40), nullable=False)  # ITEM/PARTY/TRANSACTION/...
    entity_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    op_kind: Mapped[str] = mapped_column(String(40), nullable=False)  # UPSERT/DELETE/CREATE_SALE/...
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
    last_attempt_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # PENDING/DONE/FAILED
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


class AppSetting(Base):
    __tablename__ = "app_settings"
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(String(500), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
