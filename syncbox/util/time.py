from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        # SQLite hands back naive datetimes; everything we store is UTC.
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def now_millis() -> int:
    return to_millis(now_utc())
