from __future__ import annotations

from typing import TYPE_CHECKING

from syncbox.remote.base import RemoteApi
from syncbox.remote.http import HttpRemoteApi
from syncbox.remote.reference import ReferenceRemote

if TYPE_CHECKING:
    from syncbox.core.config import Settings


def get_remote(settings: Settings) -> RemoteApi | None:
    """Build the configured remote. None means sync is switched off."""

    kind = (settings.SYNC_REMOTE or "").strip().lower()
    if kind == "reference":
        return ReferenceRemote()
    if kind == "http":
        return HttpRemoteApi(
            base_url=settings.SYNC_BACKEND_URL,
            api_key=settings.SYNC_API_KEY,
            timeout_s=settings.SYNC_HTTP_TIMEOUT_S,
        )
    if kind in {"", "none"}:
        return None
    raise ValueError(f"No remote for SYNC_REMOTE={settings.SYNC_REMOTE}")
