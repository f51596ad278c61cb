from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from event_ingest.config import Settings
from event_ingest.core.batch_log import BatchLogWriter, batch_prefix, get_codec, resolve_events_dir
from event_ingest.core.events.generator import EventGenerator
from event_ingest.core.events.models import Event
from event_ingest.core.handoff import NoopPipelineNotifier, PipelineNotifier
from event_ingest.core.stats import EventStats, get_stats
from event_ingest.utils.metrics import EVENTS_WRITTEN_TOTAL, GENERATION_BATCHES_TOTAL
from event_ingest.utils.observability import log_duration

logger = logging.getLogger(__name__)


class EventIngestService:
    """Generator -> batch log -> pipeline handoff.

    Batches go through ``generate_test_events`` (register, write, mark done);
    single events through ``save_event`` (write only).
    """

    def __init__(
        self,
        *,
        events_dir: Path,
        writer: Optional[BatchLogWriter] = None,
        generator: Optional[EventGenerator] = None,
        notifier: Optional[PipelineNotifier] = None,
    ) -> None:
        self.events_dir = Path(events_dir)
        self.writer = writer or BatchLogWriter()
        self.generator = generator or EventGenerator()
        self.notifier: PipelineNotifier = notifier or NoopPipelineNotifier()

    @classmethod
    def from_settings(cls, settings: Settings, *, notifier: Optional[PipelineNotifier] = None) -> "EventIngestService":
        events_dir = resolve_events_dir(settings.EVENTS_DIR, settings.EVENTS_FALLBACK_DIR)
        return cls(
            events_dir=events_dir,
            writer=BatchLogWriter(get_codec(settings.EVENTS_LOG_FORMAT)),
            notifier=notifier,
        )

    async def save_event(self, event: Event, *, source: str = "api", now: Optional[datetime] = None) -> str:
        """Append one event under the current second's prefix; returns the file name."""
        path = await self.writer.append(self.events_dir, batch_prefix(now), event)
        EVENTS_WRITTEN_TOTAL.labels(source=source).inc()
        return path.name

    async def generate_test_events(self, count: int, *, now: Optional[datetime] = None) -> str:
        """Generate one deterministic batch of ``count`` events and hand it to the pipeline.

        The coordinator is told about the file before the write and that ingest
        is done after it. Write errors propagate; handoff errors never do.
        Returns the batch prefix.
        """
        prefix = batch_prefix(now)
        shards = list(range(self.notifier.shards_count))
        await self.notifier.register_file(prefix, shards)

        events = self.generator.generate_batch(count)
        try:
            with log_duration(logger, "generate_test_events", slow_ms=1000.0, prefix=prefix, count=count):
                await self.writer.append_many(self.events_dir, prefix, events)
        except Exception:
            GENERATION_BATCHES_TOTAL.labels(result="error").inc()
            raise
        GENERATION_BATCHES_TOTAL.labels(result="success").inc()
        EVENTS_WRITTEN_TOTAL.labels(source="batch").inc(len(events))

        await self.notifier.mark_ingest_done(prefix)
        return prefix

    def get_stats(self) -> EventStats:
        return get_stats(self.events_dir)

    async def aclose(self) -> None:
        await self.notifier.aclose()
