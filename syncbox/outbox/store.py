from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, sessionmaker

from syncbox.models.tables import OutboxEntry
from syncbox.outbox.codec import encode_payload
from syncbox.schemas.sync_v1 import EntityKind, EntryStatus, PendingOperation
from syncbox.sync.dispatcher import is_routable
from syncbox.util.ids import new_uuid
from syncbox.util.time import now_utc

log = logging.getLogger("outbox_store")

PENDING = EntryStatus.PENDING.value
DONE = EntryStatus.DONE.value
FAILED = EntryStatus.FAILED.value


class OutboxStore:
    """Durable FIFO of pending sync operations.

    Status changes are single conditional UPDATE statements, so a concurrent
    reader never sees a half-applied transition:
    PENDING -> DONE, PENDING -> FAILED, FAILED -> PENDING. DONE is terminal.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def enqueue(self, op: PendingOperation, *, db: Session | None = None) -> OutboxEntry:
        """Append op as a PENDING entry.

        Pass the caller's session to make the entry part of the same transaction as
        the local write it mirrors; the caller then owns the commit. Storage errors
        propagate.
        """

        if not is_routable(op.entity_kind, op.op_kind):
            log.warning("Enqueued %s/%s has no remote route; the remote will reject it", op.entity_kind.value, op.op_kind.value)

        entry = OutboxEntry(
            op_id=new_uuid(),
            entity_kind=op.entity_kind.value,
            entity_id=op.entity_id,
            op_kind=op.op_kind.value,
            payload_json=encode_payload(op.payload),
            created_at=now_utc(),
            last_attempt_at=None,
            status=PENDING,
            error=None,
        )

        if db is not None:
            db.add(entry)
            db.flush()
            return entry

        with self._session_factory() as own:
            try:
                own.add(entry)
                own.commit()
                own.refresh(entry)
            except Exception:
                own.rollback()
                raise
        return entry

    # --- queries --------------------------------------------------------------

    def get(self, entry_id: int) -> OutboxEntry | None:
        with self._session_factory() as db:
            return db.query(OutboxEntry).filter(OutboxEntry.id == entry_id).one_or_none()

    def _list_by_status(self, status: str, limit: int) -> list[OutboxEntry]:
        with self._session_factory() as db:
            return (
                db.query(OutboxEntry)
                .filter(OutboxEntry.status == status)
                .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
                .limit(limit)
                .all()
            )

    def list_pending(self, limit: int = 50) -> list[OutboxEntry]:
        return self._list_by_status(PENDING, limit)

    def list_failed(self, limit: int = 50) -> list[OutboxEntry]:
        return self._list_by_status(FAILED, limit)

    def list_recent(self, limit: int = 200) -> list[OutboxEntry]:
        with self._session_factory() as db:
            return (
                db.query(OutboxEntry)
                .order_by(OutboxEntry.created_at.desc(), OutboxEntry.id.desc())
                .limit(limit)
                .all()
            )

    def count_pending(self) -> int:
        with self._session_factory() as db:
            return db.query(OutboxEntry).filter(OutboxEntry.status == PENDING).count()

    def count_failed(self) -> int:
        with self._session_factory() as db:
            return db.query(OutboxEntry).filter(OutboxEntry.status == FAILED).count()

    def count_unsynced(self) -> int:
        with self._session_factory() as db:
            return db.query(OutboxEntry).filter(OutboxEntry.status != DONE).count()

    def unsynced_entity_ids(self, entity_kind: EntityKind) -> list[str]:
        """Local ids of one kind that still have something waiting to sync (for UI badges)."""
        with self._session_factory() as db:
            rows = (
                db.query(OutboxEntry.entity_id)
                .filter(
                    OutboxEntry.status != DONE,
                    OutboxEntry.entity_kind == entity_kind.value,
                    OutboxEntry.entity_id.is_not(None),
                )
                .distinct()
                .order_by(OutboxEntry.entity_id.asc())
                .all()
            )
            return [r[0] for r in rows]

    def failed_entity_keys(self) -> set[tuple[str, str]]:
        """(entity_kind, entity_id) pairs that have a FAILED entry waiting to be retried."""
        with self._session_factory() as db:
            rows = (
                db.query(OutboxEntry.entity_kind, OutboxEntry.entity_id)
                .filter(OutboxEntry.status == FAILED, OutboxEntry.entity_id.is_not(None))
                .distinct()
                .all()
            )
            return {(r[0], r[1]) for r in rows}

    def has_earlier_unsynced(self, entry: OutboxEntry) -> bool:
        """True when an older, not yet DONE entry exists for the same entity."""
        if entry.entity_id is None:
            return False
        with self._session_factory() as db:
            n = (
                db.query(OutboxEntry)
                .filter(
                    OutboxEntry.status != DONE,
                    OutboxEntry.entity_kind == entry.entity_kind,
                    OutboxEntry.entity_id == entry.entity_id,
                    or_(
                        OutboxEntry.created_at < entry.created_at,
                        and_(OutboxEntry.created_at == entry.created_at, OutboxEntry.id < entry.id),
                    ),
                )
                .count()
            )
            return n > 0

    # --- status transitions ---------------------------------------------------

    def _update(self, *filters, values: dict) -> int:
        with self._session_factory() as db:
            n = db.query(OutboxEntry).filter(*filters).update(values, synchronize_session=False)
            db.commit()
            return n

    def mark_done(self, entry_id: int, attempted_at: datetime) -> bool:
        n = self._update(
            OutboxEntry.id == entry_id,
            OutboxEntry.status == PENDING,
            values={"status": DONE, "last_attempt_at": attempted_at, "error": None},
        )
        return n > 0

    def mark_failed(self, entry_id: int, attempted_at: datetime, error: str) -> bool:
        n = self._update(
            OutboxEntry.id == entry_id,
            OutboxEntry.status == PENDING,
            values={"status": FAILED, "last_attempt_at": attempted_at, "error": error},
        )
        return n > 0

    def mark_attempt(self, entry_id: int, attempted_at: datetime, error: str | None = None) -> bool:
        n = self._update(
            OutboxEntry.id == entry_id,
            OutboxEntry.status != DONE,
            values={"last_attempt_at": attempted_at, "error": error},
        )
        return n > 0

    def reset_failed_to_pending(self, entry_id: int | None = None) -> int:
        filters = [OutboxEntry.status == FAILED]
        if entry_id is not None:
            filters.append(OutboxEntry.id == entry_id)
        return self._update(*filters, values={"status": PENDING, "last_attempt_at": None, "error": None})

    # --- maintenance ----------------------------------------------------------

    def clear_done(self) -> int:
        with self._session_factory() as db:
            n = db.query(OutboxEntry).filter(OutboxEntry.status == DONE).delete(synchronize_session=False)
            db.commit()
            return n

    def clear_all(self) -> int:
        with self._session_factory() as db:
            n = db.query(OutboxEntry).delete(synchronize_session=False)
            db.commit()
            return n
