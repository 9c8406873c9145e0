from __future__ import annotations

import logging
import threading

from syncbox.core.celery_app import celery
from syncbox.core.config import settings
from syncbox.core.db import SessionLocal
from syncbox.core.device import get_or_create_device_id
from syncbox.outbox.store import OutboxStore
from syncbox.remote.base import RemoteApi
from syncbox.remote.registry import get_remote
from syncbox.sync.engine import DrainPolicy, SyncEngine

log = logging.getLogger("sync_tasks")

# One remote per worker process so the HTTP connection pool (or the reference
# projection) survives between runs.
_remote_lock = threading.Lock()
_remote: RemoteApi | None = None
_remote_built = False


def _get_remote() -> RemoteApi | None:
    global _remote, _remote_built
    with _remote_lock:
        if not _remote_built:
            _remote = get_remote(settings)
            _remote_built = True
        return _remote


def set_remote(remote: RemoteApi | None) -> None:
    """Swap the worker's remote (tests, or a rebuilt transport after config changes)."""
    global _remote, _remote_built
    with _remote_lock:
        _remote = remote
        _remote_built = True


def build_engine() -> SyncEngine:
    with SessionLocal() as db:
        device_id = get_or_create_device_id(db, override=settings.DEVICE_ID)
    return SyncEngine(
        store=OutboxStore(SessionLocal),
        remote=_get_remote(),
        device_id=device_id,
        policy=DrainPolicy(settings.SYNC_DRAIN_POLICY),
    )


@celery.task(name="syncbox.tasks.sync_tasks.drain_outbox")
def drain_outbox(*, limit: int | None = None) -> dict:
    """Deliver PENDING outbox entries in creation order.

    FAILED entries are left alone; sweep_failed puts them back in line.
    """

    res = build_engine().sync_once(limit=limit or settings.SYNC_BATCH_LIMIT)
    if res.attempted:
        log.info("drain_outbox: %s", res.message)
    return {"ok": True, **res.as_dict()}


@celery.task(name="syncbox.tasks.sync_tasks.sweep_failed")
def sweep_failed(*, limit: int | None = None) -> dict:
    """Re-queue FAILED entries and drain again, backing off between up to SYNC_MAX_RETRIES rounds."""

    res = build_engine().sync_with_retry(
        max_retries=settings.SYNC_MAX_RETRIES,
        limit=limit or settings.SYNC_BATCH_LIMIT,
    )
    if res.attempted:
        log.info("sweep_failed: %s", res.message)
    return {"ok": True, **res.as_dict()}


@celery.task(name="syncbox.tasks.sync_tasks.retry_entry")
def retry_entry(*, entry_id: int) -> dict:
    res = build_engine().retry_entry(entry_id)
    return {"ok": res.failed == 0, **res.as_dict()}
