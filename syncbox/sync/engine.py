from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from syncbox.models.tables import OutboxEntry
from syncbox.outbox import codec
from syncbox.outbox.store import DONE, FAILED, OutboxStore
from syncbox.remote.base import RemoteApi
from syncbox.schemas.sync_v1 import RemoteResult, RequestPreview, SyncEnvelope
from syncbox.sync import dispatcher
from syncbox.util.time import now_utc, to_millis

log = logging.getLogger("sync_engine")

NOTHING_TO_SYNC = "Nothing to sync"
NOT_CONFIGURED = "Sync backend not configured"
BLOCKED_BY_EARLIER = "Blocked by an earlier unsynced entry for the same entity"

EntityKey = tuple[str, str]


class DrainPolicy(str, Enum):
    # Stop the run at the first failed entry; the rest stay PENDING.
    HALT_ON_FAILURE = "halt_on_failure"
    # Keep going, but hold back later entries for the same entity as a failed one.
    SKIP_BLOCKED = "skip_blocked"


@dataclass(frozen=True)
class SyncResult:
    attempted: int
    succeeded: int
    failed: int
    message: str
    skipped: int = 0

    @property
    def is_fully_success(self) -> bool:
        return self.failed == 0 and self.skipped == 0 and self.attempted > 0

    @property
    def has_pending(self) -> bool:
        return self.failed > 0 or self.skipped > 0 or (self.attempted == 0 and self.message != NOTHING_TO_SYNC)

    def as_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "message": self.message,
        }


def _entity_key(entry: OutboxEntry) -> EntityKey | None:
    if entry.entity_id is None:
        return None
    return (entry.entity_kind, entry.entity_id)


class SyncEngine:
    """Drains the outbox into a RemoteApi, oldest entry first.

    Each entry is decoded, canonicalized, previewed and wrapped in an envelope
    carrying its stored opId, then handed to the remote. ok marks it DONE,
    anything else (including an exception from the remote) marks it FAILED.
    A failure is never assumed to be a success: redelivery with the same opId is
    what makes a retry safe.

    An entity with a FAILED entry is blocked until that entry is retried: later
    entries for it stay PENDING across runs, so they can never overtake it.
    Remotes exposing apply_batch get one request per chunk of entries; a chunk
    never holds two entries for the same entity.
    """

    def __init__(
        self,
        *,
        store: OutboxStore,
        remote: RemoteApi | None,
        device_id: str,
        policy: DrainPolicy = DrainPolicy.HALT_ON_FAILURE,
    ):
        self.store = store
        self.remote = remote
        self.device_id = device_id
        self.policy = policy
        self._lock = threading.Lock()

    def sync_once(self, *, limit: int = 100) -> SyncResult:
        with self._lock:
            return self._deliver(self.store.list_pending(limit=limit))

    def sync_all_pending(self, *, limit: int = 200) -> SyncResult:
        """Put FAILED entries back in line, then drain everything in creation order."""
        with self._lock:
            reset = self.store.reset_failed_to_pending()
            if reset:
                log.info("Re-queued %s failed entries", reset)
            return self._deliver(self.store.list_pending(limit=limit))

    def retry_entry(self, entry_id: int) -> SyncResult:
        with self._lock:
            entry = self.store.get(entry_id)
            if entry is None:
                return SyncResult(0, 0, 0, "Entry not found")
            if entry.status == DONE:
                return SyncResult(0, 0, 0, "Entry already synced")
            if self.store.has_earlier_unsynced(entry):
                return SyncResult(0, 0, 0, BLOCKED_BY_EARLIER, skipped=1)
            if entry.status == FAILED:
                self.store.reset_failed_to_pending(entry_id)
                entry = self.store.get(entry_id)
            return self._deliver([entry])

    def reset_failed(self, entry_id: int | None = None) -> int:
        return self.store.reset_failed_to_pending(entry_id)

    def sync_with_retry(
        self,
        *,
        max_retries: int = 5,
        limit: int = 200,
        initial_delay_s: float = 0.2,
        max_delay_s: float = 4.0,
        sleep: Callable[[float], None] | None = None,
    ) -> SyncResult:
        """Repeat sync_all_pending with exponential backoff until nothing fails."""

        sleep = sleep or time.sleep
        delay = initial_delay_s
        result = SyncResult(0, 0, 0, "Sync not attempted")
        for attempt in range(1, max(1, max_retries) + 1):
            result = self.sync_all_pending(limit=limit)
            if result.failed == 0 and result.skipped == 0:
                return result
            if attempt >= max_retries:
                break
            log.warning("Sync attempt %s/%s left %s failed: %s", attempt, max_retries, result.failed, result.message)
            sleep(delay)
            delay = min(max_delay_s, delay * 2.0)
        return result

    # --- internals ------------------------------------------------------------

    @property
    def _batching(self) -> bool:
        return callable(getattr(self.remote, "apply_batch", None))

    def _deliver(self, entries: list[OutboxEntry]) -> SyncResult:
        if not entries:
            return SyncResult(0, 0, 0, NOTHING_TO_SYNC)

        now = now_utc()

        if self.remote is None:
            for entry in entries:
                self.store.mark_attempt(entry.id, now, None)
            return SyncResult(len(entries), 0, 0, NOT_CONFIGURED)

        blocked: set[EntityKey] = self.store.failed_entity_keys()
        attempted = succeeded = failed = skipped = 0
        i = 0

        while i < len(entries):
            chunk: list[OutboxEntry] = []
            chunk_keys: set[EntityKey] = set()
            while i < len(entries):
                entry = entries[i]
                key = _entity_key(entry)
                if key is not None and key in blocked:
                    skipped += 1
                    i += 1
                    continue
                if key is not None and key in chunk_keys:
                    break
                chunk.append(entry)
                if key is not None:
                    chunk_keys.add(key)
                i += 1
                if not self._batching:
                    break
            if not chunk:
                continue

            halted = False
            for j, (entry, (ok, message)) in enumerate(zip(chunk, self._deliver_chunk(chunk, now))):
                attempted += 1
                if ok:
                    self.store.mark_done(entry.id, now)
                    succeeded += 1
                    continue

                self.store.mark_failed(entry.id, now, message or "Sync failed")
                failed += 1
                key = _entity_key(entry)
                if key is not None:
                    blocked.add(key)
                log.warning("Outbox entry %s (%s/%s) failed: %s", entry.id, entry.entity_kind, entry.op_kind, message)

                if self.policy == DrainPolicy.HALT_ON_FAILURE:
                    # Later chunk members may already be applied remotely; they stay
                    # PENDING and their replay is acknowledged by opId.
                    skipped += len(chunk) - j - 1 + len(entries) - i
                    halted = True
                    break
            if halted:
                break

        msg = f"Synced {succeeded}" if failed == 0 else f"Synced {succeeded}, failed {failed}"
        if skipped:
            msg += f", deferred {skipped}"
        return SyncResult(attempted, succeeded, failed, msg, skipped=skipped)

    def _prepare(self, entry: OutboxEntry, now: datetime) -> tuple[SyncEnvelope, RequestPreview] | str:
        try:
            op = codec.decode(entry)
        except codec.InvalidOutboxEntry as e:
            return f"Invalid outbox payload: {e}"

        preview = dispatcher.preview(op)
        envelope = dispatcher.envelope(op, op_id=entry.op_id, device_id=self.device_id, sent_at_millis=to_millis(now))
        return envelope, preview

    def _deliver_chunk(self, chunk: list[OutboxEntry], now: datetime) -> list[tuple[bool, str]]:
        prepared = [self._prepare(entry, now) for entry in chunk]
        outcomes: list[tuple[bool, str]] = [(False, p) if isinstance(p, str) else (False, "") for p in prepared]
        sendable = [(idx, p) for idx, p in enumerate(prepared) if not isinstance(p, str)]
        if not sendable:
            return outcomes

        pairs = [p for _, p in sendable]
        try:
            if self._batching:
                results: list[RemoteResult] = self.remote.apply_batch(pairs)
            else:
                results = [self.remote.apply(envelope, preview) for envelope, preview in pairs]
        except Exception as e:
            log.exception("Delivery of %s entries raised", len(pairs))
            message = f"Ambiguous delivery failure: {type(e).__name__}: {e}"
            for idx, _ in sendable:
                outcomes[idx] = (False, message)
            return outcomes

        if len(results) != len(pairs):
            message = f"Ambiguous delivery failure: expected {len(pairs)} results, got {len(results)}"
            for idx, _ in sendable:
                outcomes[idx] = (False, message)
            return outcomes

        for (idx, (envelope, preview)), result in zip(sendable, results):
            log.debug("opId=%s %s -> ok=%s %s", envelope.op_id, preview.to_one_line(200), result.ok, result.message)
            outcomes[idx] = (result.ok, result.message)
        return outcomes
