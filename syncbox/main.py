from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from redis import Redis
from sqlalchemy import text

from syncbox.api.routers.outbox import router as outbox_router
from syncbox.core.config import settings
from syncbox.core.db import engine
from syncbox.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger("app")

app = FastAPI(title=settings.APP_NAME)


def _check_db() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def _check_redis() -> bool:
    try:
        r = Redis.from_url(settings.REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
        return bool(r.ping())
    except Exception:
        return False


@app.get("/health")
def health() -> dict[str, Any]:
    deps = {
        "db": _check_db(),
        "redis": _check_redis(),
    }
    # Redis only carries the scheduler; local writes and the outbox keep working without it.
    return {"ok": deps["db"], "deps": deps, "app": settings.APP_NAME, "sync_remote": settings.SYNC_REMOTE}


app.include_router(outbox_router, prefix="/outbox", tags=["outbox"])
