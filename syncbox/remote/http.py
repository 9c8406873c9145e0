from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from syncbox.schemas.sync_v1 import RemoteResult, RequestPreview, SyncEnvelope

log = logging.getLogger("http_remote")


def _truncate(s: str, n: int = 200) -> str:
    s = s or ""
    return s if len(s) <= n else s[:n] + "…"


@dataclass
class HttpRemoteApi:
    """Delivers envelopes to the sync backend over HTTP.

    Single op: POST {base_url} with the envelope.
    Batch: POST {base_url}-batch with {"ops": [{"envelope", "preview"}]}, falling
    back to one request per op when the batch endpoint is unavailable.

    Any non-2xx status or exception is a failure; the status code is not inspected
    further because redelivery with the same opId is safe on every path.
    """

    base_url: str
    api_key: str | None = None
    timeout_s: float = 30.0
    client: httpx.Client | None = None
    _owns_client: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = httpx.Client(timeout=self.timeout_s)
            self._owns_client = True

    def close(self) -> None:
        if self._owns_client and self.client is not None:
            self.client.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = (self.api_key or "").strip()
        if key:
            headers["apikey"] = key
            headers["Authorization"] = f"Bearer {key}"
        return headers

    def apply(self, envelope: SyncEnvelope, preview: RequestPreview) -> RemoteResult:
        url = (self.base_url or "").strip()
        if not url:
            return RemoteResult(ok=False, message="Backend not configured (base_url empty)")

        headers = self._headers()
        headers["Idempotency-Key"] = envelope.op_id
        headers["X-Device-Id"] = envelope.device_id
        headers["X-Preview-Method"] = preview.method
        headers["X-Preview-Path"] = preview.path

        try:
            resp = self.client.post(url, headers=headers, json=envelope.to_wire())
        except Exception as e:
            # Timeouts land here too: the remote may have applied the op, so report
            # failure and let the unchanged opId make the retry safe.
            return RemoteResult(ok=False, message=f"HTTP error: {type(e).__name__}: {e}")

        if resp.is_success:
            return RemoteResult(ok=True, message=f"HTTP {resp.status_code} {resp.reason_phrase}")
        text = _truncate(resp.text)
        suffix = f": {text}" if text.strip() else ""
        return RemoteResult(ok=False, message=f"HTTP {resp.status_code} {resp.reason_phrase}{suffix}")

    def apply_batch(self, pairs: list[tuple[SyncEnvelope, RequestPreview]]) -> list[RemoteResult]:
        if not (self.base_url or "").strip():
            return [RemoteResult(ok=False, message="Backend not configured (base_url empty)") for _ in pairs]
        if not pairs:
            return []

        results = self._try_batch(pairs)
        if results is not None:
            return results

        log.info("Batch endpoint unavailable; applying %s ops one by one", len(pairs))
        return [self.apply(env, preview) for env, preview in pairs]

    def _try_batch(self, pairs: list[tuple[SyncEnvelope, RequestPreview]]) -> list[RemoteResult] | None:
        url = f"{self.base_url.strip().rstrip('/')}-batch"
        data = {
            "ops": [
                {"envelope": env.to_wire(), "preview": {"method": preview.method, "path": preview.path}}
                for env, preview in pairs
            ]
        }
        headers = self._headers()
        headers["X-Batch-Count"] = str(len(pairs))

        try:
            resp = self.client.post(url, headers=headers, json=data)
            if not resp.is_success:
                return None
            raw = resp.json().get("results")
        except Exception as e:
            log.warning("Batch sync failed: %s", str(e))
            return None

        if not isinstance(raw, list) or len(raw) != len(pairs):
            return None
        return [
            RemoteResult(ok=bool(r.get("ok", False)), message=str(r.get("message") or ""))
            if isinstance(r, dict)
            else RemoteResult(ok=False, message="Malformed batch result")
            for r in raw
        ]
