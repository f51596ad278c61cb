"""
Event ingest: pytest fixtures and configuration.

Provides:
- Isolated environment (tmp SQLite DB, tmp events dir, no coordinator, no auto generation)
- Service wired to a per-test events directory with a seeded generator
- ASGI HTTP client running the app lifespan
- DB session on the tracking store
"""
import os
import random
import tempfile
from pathlib import Path

# Must run before event_ingest is imported: settings and the engine are module-level.
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="event-ingest-tests-"))
os.environ["CONFIG_FILE"] = str(_TMP_ROOT / "absent.toml")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{(_TMP_ROOT / 'pipeline.db').as_posix()}"
os.environ["EVENTS_DIR"] = str(_TMP_ROOT / "events")
os.environ["EVENTS_FALLBACK_DIR"] = str(_TMP_ROOT / "events-fallback")
os.environ["EVENTS_AUTO_GENERATION_ENABLED"] = "false"
os.environ["PIPELINE_URL"] = ""
os.environ["LOG_FORMAT"] = "text"

import httpx
import pytest
import pytest_asyncio

from event_ingest.core.batch_log import BatchLogWriter, get_codec
from event_ingest.core.events.generator import EventGenerator
from event_ingest.core.handoff import NoopPipelineNotifier
from event_ingest.core.scheduler import GenerationController
from event_ingest.core.service import EventIngestService
from event_ingest.db.session import AsyncSessionLocal, create_all


class RecordingNotifier:
    """In-memory notifier that remembers the order of handoff calls."""

    def __init__(self, shards_count: int = 2) -> None:
        self.shards_count = shards_count
        self.calls: list[tuple] = []

    async def register_file(self, filename, shards):
        self.calls.append(("register", filename, list(shards)))

    async def mark_ingest_done(self, filename):
        self.calls.append(("done", filename))

    async def aclose(self):
        self.calls.append(("close",))


@pytest.fixture
def events_dir(tmp_path: Path) -> Path:
    return tmp_path / "events"


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(events_dir: Path, notifier: RecordingNotifier) -> EventIngestService:
    return EventIngestService(
        events_dir=events_dir,
        writer=BatchLogWriter(get_codec("text")),
        generator=EventGenerator(random.Random(1234)),
        notifier=notifier,
    )


@pytest.fixture
def binlog_service(events_dir: Path) -> EventIngestService:
    return EventIngestService(
        events_dir=events_dir,
        writer=BatchLogWriter(get_codec("binlog")),
        generator=EventGenerator(random.Random(1234)),
        notifier=NoopPipelineNotifier(),
    )


@pytest_asyncio.fixture
async def controller(service: EventIngestService):
    ctrl = GenerationController(service)
    yield ctrl
    await ctrl.aclose()


@pytest_asyncio.fixture
async def client(service: EventIngestService):
    """HTTP client against the app, with the lifespan running and the per-test service swapped in."""
    from event_ingest.main import app

    async with app.router.lifespan_context(app):
        ctrl = GenerationController(service)
        app.state.service = service
        app.state.controller = ctrl
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
                yield ac
        finally:
            await ctrl.aclose()


@pytest_asyncio.fixture
async def db_session():
    await create_all()
    async with AsyncSessionLocal() as session:
        yield session
