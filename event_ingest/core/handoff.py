from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

import httpx

from event_ingest.config import Settings
from event_ingest.utils.metrics import HANDOFF_REQUESTS_TOTAL

logger = logging.getLogger(__name__)

REGISTER_PATH = "/files/register"
INGEST_DONE_PATH = "/stages/event-ingest/done"


class PipelineNotifier(Protocol):
    """Best-effort batch lifecycle notifications to the pipeline coordinator.

    Implementations never raise from ``register_file`` / ``mark_ingest_done``.
    """

    shards_count: int

    async def register_file(self, filename: str, shards: Sequence[int]) -> None: ...

    async def mark_ingest_done(self, filename: str) -> None: ...

    async def aclose(self) -> None: ...


class NoopPipelineNotifier:
    shards_count = 0

    async def register_file(self, filename: str, shards: Sequence[int]) -> None:
        return None

    async def mark_ingest_done(self, filename: str) -> None:
        return None

    async def aclose(self) -> None:
        return None


def _emit(call: str, result: str) -> None:
    try:
        HANDOFF_REQUESTS_TOTAL.labels(call=call, result=result).inc()
    except Exception:
        pass


class HttpPipelineNotifier:
    """POSTs JSON to ``{base_url}/files/register`` and ``{base_url}/stages/event-ingest/done``.

    One attempt per call with a short timeout. Failures (network, timeout,
    non-2xx) are logged and counted; a missed notification stays missed.
    """

    def __init__(
        self,
        base_url: str,
        *,
        shards_count: int,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.shards_count = int(shards_count)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _post(self, call: str, path: str, body: dict) -> None:
        url = self.base_url + path
        try:
            resp = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            _emit(call, "error")
            logger.warning("handoff.request_failed call=%s url=%s error=%r", call, url, exc)
            return

        if resp.is_success:
            _emit(call, "success")
            logger.info("handoff.ok call=%s filename=%s status=%d", call, body.get("filename"), resp.status_code)
            return

        _emit(call, "http_error")
        logger.warning(
            "handoff.bad_status call=%s filename=%s status=%d body=%s",
            call,
            body.get("filename"),
            resp.status_code,
            resp.text[:200],
        )

    async def register_file(self, filename: str, shards: Sequence[int]) -> None:
        await self._post("register", REGISTER_PATH, {"filename": filename, "shards": [int(s) for s in shards]})

    async def mark_ingest_done(self, filename: str) -> None:
        await self._post("ingest_done", INGEST_DONE_PATH, {"filename": filename})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_notifier(settings: Settings) -> PipelineNotifier:
    """HTTP notifier when a coordinator URL and a positive shard count are configured, else no-op."""
    url = (settings.PIPELINE_URL or "").strip()
    if not url or settings.PIPELINE_SHARDS_COUNT <= 0:
        logger.info("handoff.disabled url_set=%s shards=%d", bool(url), settings.PIPELINE_SHARDS_COUNT)
        return NoopPipelineNotifier()
    return HttpPipelineNotifier(
        url,
        shards_count=settings.PIPELINE_SHARDS_COUNT,
        timeout=settings.PIPELINE_TIMEOUT_SECONDS,
    )
