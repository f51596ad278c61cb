import uuid

import pytest
from httpx import AsyncClient

from event_ingest.core import pipeline_tracking


def _filename() -> str:
    return f"2024{uuid.uuid4().hex[:10]}"


@pytest.mark.asyncio
async def test_register_creates_one_row_per_shard(db_session):
    name = _filename()
    assert await pipeline_tracking.register_file(db_session, name, [0, 1]) is True

    rows = await pipeline_tracking.list_file_rows(db_session, name)
    assert [r.shard for r in rows] == [0, 1]
    assert {r.event_ingest_status for r in rows} == {"started"}
    assert {r.transform_status for r in rows} == {"new"}
    assert {r.load_status for r in rows} == {"new"}


@pytest.mark.asyncio
async def test_register_twice_is_idempotent(db_session):
    name = _filename()
    await pipeline_tracking.register_file(db_session, name, [0, 1])
    assert await pipeline_tracking.register_file(db_session, name, [0, 1]) is False
    assert len(await pipeline_tracking.list_file_rows(db_session, name)) == 2


@pytest.mark.asyncio
async def test_reregister_does_not_revert_done(db_session):
    name = _filename()
    await pipeline_tracking.register_file(db_session, name, [0, 1])
    assert await pipeline_tracking.mark_ingest_done(db_session, name) == 2

    await pipeline_tracking.register_file(db_session, name, [0, 1, 2])
    rows = await pipeline_tracking.list_file_rows(db_session, name)
    assert [(r.shard, r.event_ingest_status) for r in rows] == [(0, "done"), (1, "done"), (2, "started")]


@pytest.mark.asyncio
async def test_mark_done_for_unknown_file(db_session):
    assert await pipeline_tracking.mark_ingest_done(db_session, _filename()) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("base", ["/pipeline", "/api/v1/pipeline"])
async def test_tracking_endpoints(client: AsyncClient, base):
    name = _filename()

    resp = await client.post(f"{base}/files/register", json={"filename": name, "shards": [0, 1]})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"filename": name, "shards": [0, 1], "created": True}

    resp = await client.post(f"{base}/files/register", json={"filename": name, "shards": [0, 1]})
    assert resp.json()["created"] is False

    resp = await client.post(f"{base}/stages/event-ingest/done", json={"filename": name})
    assert resp.json() == {"filename": name, "updated_rows": 2}

    resp = await client.get(f"{base}/files/{name}")
    items = resp.json()["items"]
    assert [(i["shard"], i["event_ingest_status"]) for i in items] == [(0, "done"), (1, "done")]


@pytest.mark.asyncio
async def test_negative_shard_is_rejected(client: AsyncClient):
    resp = await client.post("/pipeline/files/register", json={"filename": _filename(), "shards": [-1]})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "E002"
