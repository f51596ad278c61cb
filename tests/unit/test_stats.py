import json
import struct
from pathlib import Path

from event_ingest.core.batch_log import BatchLogWriter, get_codec
from event_ingest.core.events.models import Event
from event_ingest.core.stats import get_stats


def _record(i: int) -> bytes:
    return json.dumps({"timestamp": "t", "event_type": 0, "payload": {"i": i}, "saved_at": "s"}).encode()


def _frame(body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + body


def test_missing_directory_yields_zero_stats(tmp_path: Path):
    stats = get_stats(tmp_path / "nope")
    assert stats.total_files == 0
    assert stats.total_events == 0
    assert stats.files == {}
    assert stats.events_directory == str(tmp_path / "nope")


def test_truncated_binlog_counts_complete_records(tmp_path: Path):
    data = b"".join(_frame(_record(i)) for i in range(3))
    # Header announces 100 bytes, only 10 follow.
    data += struct.pack(">I", 100) + b"x" * 10
    (tmp_path / "20240101000000.event-ingest.binlog").write_bytes(data)

    stats = get_stats(tmp_path)
    assert stats.total_files == 1
    assert stats.total_events == 3
    entry = stats.files["20240101000000.event-ingest.binlog"]
    assert entry.events == 3
    assert entry.truncated is True
    assert entry.format == "binlog"
    assert entry.size == len(data)


def test_short_header_ends_count(tmp_path: Path):
    (tmp_path / "a.event-ingest.binlog").write_bytes(_frame(_record(0)) + b"\x00\x00")
    stats = get_stats(tmp_path)
    assert stats.total_events == 1
    assert stats.files["a.event-ingest.binlog"].truncated is True


def test_text_logs_and_mixed_formats_are_counted(tmp_path: Path):
    events = [Event(timestamp="t", event_type=4, payload=b'{"shop_id":1,"active":true}') for _ in range(4)]
    BatchLogWriter(get_codec("text")).append_sync(tmp_path, "20240101000001", events)
    BatchLogWriter(get_codec("binlog")).append_sync(tmp_path, "20240101000002", events[:2])
    (tmp_path / "notes.txt").write_text("ignored\n")
    (tmp_path / "other.json").write_text("{}")

    stats = get_stats(tmp_path)
    assert stats.total_files == 2
    assert stats.total_events == 6
    assert stats.files["20240101000001.event-ingest.txt"].events == 4
    assert stats.files["20240101000001.event-ingest.txt"].format == "text"
    assert stats.files["20240101000002.event-ingest.binlog"].events == 2


def test_partial_trailing_line_is_not_counted(tmp_path: Path):
    (tmp_path / "p.event-ingest.txt").write_bytes(_record(0) + b"\n" + _record(1) + b"\n" + b'{"half":')
    stats = get_stats(tmp_path)
    assert stats.total_events == 2
    assert stats.files["p.event-ingest.txt"].truncated is True


def test_damaged_binlog_does_not_stop_the_scan(tmp_path: Path):
    # Sorts before the healthy file.
    (tmp_path / "20240101000000.event-ingest.binlog").write_bytes(_frame(_record(0)) + struct.pack(">I", 500) + b"xy")
    (tmp_path / "20240101000001.event-ingest.binlog").write_bytes(b"".join(_frame(_record(i)) for i in range(3)))

    stats = get_stats(tmp_path)
    assert stats.total_files == 2
    assert stats.total_events == 4
    assert stats.files["20240101000000.event-ingest.binlog"].events == 1
    assert stats.files["20240101000000.event-ingest.binlog"].truncated is True
    assert stats.files["20240101000001.event-ingest.binlog"].events == 3
    assert stats.files["20240101000001.event-ingest.binlog"].truncated is False


def test_healthy_binlog_next_to_empty_truncated_file(tmp_path: Path):
    (tmp_path / "a.event-ingest.binlog").write_bytes(struct.pack(">I", 64) + b"{}")
    (tmp_path / "b.event-ingest.binlog").write_bytes(b"".join(_frame(_record(i)) for i in range(3)))

    stats = get_stats(tmp_path)
    assert stats.total_events == 3
    assert stats.files["a.event-ingest.binlog"].events == 0
    assert stats.files["b.event-ingest.binlog"].events == 3
