from __future__ import annotations

from typing import Protocol

from syncbox.schemas.sync_v1 import RemoteResult, RequestPreview, SyncEnvelope


class RemoteApi(Protocol):
    """Where sync goes. The return value is the only observable effect for callers."""

    def apply(self, envelope: SyncEnvelope, preview: RequestPreview) -> RemoteResult: ...
