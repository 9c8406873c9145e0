from __future__ import annotations

from sqlalchemy.orm import Session

from syncbox.models.tables import AppSetting
from syncbox.util.ids import new_uuid
from syncbox.util.time import now_utc

DEVICE_ID_KEY = "device_id"


def get_or_create_device_id(db: Session, *, override: str | None = None) -> str:
    """Stable per-install device id, generated once and persisted in app_settings."""

    if override and override.strip():
        return override.strip()

    row = db.query(AppSetting).filter(AppSetting.key == DEVICE_ID_KEY).one_or_none()
    if row:
        return row.value

    device_id = new_uuid()
    db.add(AppSetting(key=DEVICE_ID_KEY, value=device_id, updated_at=now_utc()))
    db.commit()
    return device_id
