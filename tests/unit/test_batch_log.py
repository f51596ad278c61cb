import asyncio
import json
import struct
from datetime import datetime, timezone
from pathlib import Path

import pytest

from event_ingest.core.batch_log import (
    BatchLogWriter,
    LengthPrefixedCodec,
    TextLineCodec,
    batch_prefix,
    codec_for_filename,
    encode_record,
    get_codec,
    resolve_events_dir,
)
from event_ingest.core.events.models import Event
from event_ingest.utils.exceptions import BatchLogError


def _event(i: int = 0) -> Event:
    return Event(timestamp="2024-01-01 00:00:00.000", event_type=4, payload=f'{{"shop_id":{i + 1},"active":true}}'.encode())


def test_batch_prefix_is_second_resolution():
    assert batch_prefix(datetime(2024, 1, 2, 3, 4, 5, 999000)) == "20240102030405"


def test_file_names_per_codec():
    assert BatchLogWriter(get_codec("text")).filename("20240101120000") == "20240101120000.event-ingest.txt"
    assert BatchLogWriter(get_codec("binlog")).filename("20240101120000") == "20240101120000.event-ingest.binlog"
    with pytest.raises(ValueError):
        get_codec("parquet")


def test_codec_for_filename():
    assert isinstance(codec_for_filename("20240101120000.event-ingest.txt"), TextLineCodec)
    assert isinstance(codec_for_filename("20240101120000.event-ingest.binlog"), LengthPrefixedCodec)
    assert isinstance(codec_for_filename("legacy.binlog"), LengthPrefixedCodec)
    assert codec_for_filename("notes.txt") is None
    assert codec_for_filename("20240101120000.event-ingest.json") is None


def test_encode_record_embeds_payload_compactly():
    raw = encode_record(_event(), "2024-01-01 00:00:01.000")
    assert b", " not in raw and b": " not in raw
    assert json.loads(raw) == {
        "timestamp": "2024-01-01 00:00:00.000",
        "event_type": 4,
        "payload": {"shop_id": 1, "active": True},
        "saved_at": "2024-01-01 00:00:01.000",
    }


def test_encode_record_keeps_non_json_payload_as_text():
    event = Event(timestamp="t", event_type=0, payload=b"not json")
    assert json.loads(encode_record(event, "s"))["payload"] == "not json"


def test_append_text_lines(tmp_path: Path):
    writer = BatchLogWriter(get_codec("text"))
    path = writer.append_sync(tmp_path / "events", "20240101120000", [_event(i) for i in range(3)])

    assert path == tmp_path / "events" / "20240101120000.event-ingest.txt"
    lines = path.read_bytes().splitlines()
    assert len(lines) == 3
    records = [json.loads(line) for line in lines]
    assert [r["payload"]["shop_id"] for r in records] == [1, 2, 3]
    assert len({r["saved_at"] for r in records}) == 1


def test_append_binlog_frames(tmp_path: Path):
    writer = BatchLogWriter(get_codec("binlog"))
    path = writer.append_sync(tmp_path, "p", [_event(0), _event(1)])

    data = path.read_bytes()
    offset = 0
    bodies = []
    while offset < len(data):
        (length,) = struct.unpack(">I", data[offset : offset + 4])
        bodies.append(json.loads(data[offset + 4 : offset + 4 + length]))
        offset += 4 + length
    assert offset == len(data)
    assert [b["payload"]["shop_id"] for b in bodies] == [1, 2]


def test_appends_accumulate_in_same_file(tmp_path: Path):
    writer = BatchLogWriter()
    writer.append_sync(tmp_path, "p", [_event(0)])
    writer.append_sync(tmp_path, "p", [_event(1)])
    assert len((tmp_path / "p.event-ingest.txt").read_bytes().splitlines()) == 2


def test_empty_append_creates_no_file(tmp_path: Path):
    path = BatchLogWriter().append_sync(tmp_path, "p", [])
    assert not path.exists()


def test_unwritable_directory_raises_batch_log_error(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    with pytest.raises(BatchLogError) as ei:
        BatchLogWriter().append_sync(blocker / "events", "p", [_event()])
    assert ei.value.code == "E004"


@pytest.mark.asyncio
async def test_concurrent_appends_never_interleave(tmp_path: Path):
    writer = BatchLogWriter(get_codec("text"))
    await asyncio.gather(*(writer.append(tmp_path, "p", _event(i)) for i in range(60)))

    lines = (tmp_path / "p.event-ingest.txt").read_bytes().splitlines()
    assert len(lines) == 60
    shop_ids = sorted(json.loads(line)["payload"]["shop_id"] for line in lines)
    assert shop_ids == list(range(1, 61))


@pytest.mark.asyncio
async def test_concurrent_batches_stay_contiguous(tmp_path: Path):
    writer = BatchLogWriter(get_codec("text"))
    batches = [[_event(b * 10 + i) for i in range(10)] for b in range(5)]
    await asyncio.gather(*(writer.append_many(tmp_path, "p", batch) for batch in batches))

    lines = (tmp_path / "p.event-ingest.txt").read_bytes().splitlines()
    ids = [json.loads(line)["payload"]["shop_id"] - 1 for line in lines]
    chunks = [ids[i : i + 10] for i in range(0, 50, 10)]
    for chunk in chunks:
        assert chunk == list(range(chunk[0], chunk[0] + 10))


def test_resolve_events_dir_prefers_then_falls_back(tmp_path: Path):
    assert resolve_events_dir(tmp_path / "shared", tmp_path / "local") == tmp_path / "shared"

    blocker = tmp_path / "file"
    blocker.write_text("x")
    out = resolve_events_dir(blocker / "shared", tmp_path / "local")
    assert out == tmp_path / "local"
    assert out.is_dir()


def test_saved_at_uses_utc_millis(tmp_path: Path):
    from event_ingest.core.batch_log import saved_at_stamp

    stamp = saved_at_stamp(datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc))
    assert stamp == "2024-05-06 07:08:09.123"


def test_lock_set_stays_fixed_across_many_batch_files(tmp_path: Path):
    from event_ingest.core.batch_log import LOCK_STRIPES

    writer = BatchLogWriter()
    for i in range(500):
        writer.append_sync(tmp_path, f"20240101{i:06d}", [_event(i)])

    assert len(list(tmp_path.iterdir())) == 500
    assert len(writer._locks) == LOCK_STRIPES
    path = writer.path_for(tmp_path, "20240101000007")
    assert writer._lock_for(path) is writer._lock_for(Path(str(path)))
