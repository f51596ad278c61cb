"""Append-only batch log.

One file per batch prefix (``YYYYMMDDHHMMSS``). Two record encodings share
the same JSON record and differ only in framing:

- ``TextLineCodec``: one JSON object per line, ``{prefix}.event-ingest.txt``
- ``LengthPrefixedCodec``: 4-byte big-endian length + record bytes,
  ``{prefix}.event-ingest.binlog``

The writer uses one codec (``EVENTS_LOG_FORMAT``); the stats reader
understands both.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import struct
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Protocol

from event_ingest.core.events.models import Event
from event_ingest.utils.exceptions import BatchLogError

logger = logging.getLogger(__name__)

FILE_STEM_SUFFIX = ".event-ingest"
_LENGTH_HEADER = struct.Struct(">I")
LOCK_STRIPES = 64


def batch_prefix(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def saved_at_stamp(now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%d %H:%M:%S.") + f"{ts.microsecond // 1000:03d}"


def encode_record(event: Event, saved_at: str) -> bytes:
    """Serialize one event as a compact JSON object with the payload embedded."""
    try:
        payload = json.loads(event.payload)
    except ValueError:
        payload = event.payload.decode("utf-8", errors="replace")
    record = {
        "timestamp": event.timestamp,
        "event_type": event.event_type,
        "payload": payload,
        "saved_at": saved_at,
    }
    return json.dumps(record, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class LogCodec(Protocol):
    name: str
    extension: str

    def frame(self, record: bytes) -> bytes: ...

    def count_records(self, stream: BinaryIO) -> tuple[int, bool]: ...


class TextLineCodec:
    name = "text"
    extension = ".txt"

    def frame(self, record: bytes) -> bytes:
        return record + b"\n"

    def count_records(self, stream: BinaryIO) -> tuple[int, bool]:
        """Return ``(complete_lines, truncated)``; a trailing partial line stops counting."""
        count = 0
        for line in stream:
            if not line.endswith(b"\n"):
                return count, True
            if line.strip():
                count += 1
        return count, False


class LengthPrefixedCodec:
    name = "binlog"
    extension = ".binlog"

    def frame(self, record: bytes) -> bytes:
        return _LENGTH_HEADER.pack(len(record)) + record

    def count_records(self, stream: BinaryIO) -> tuple[int, bool]:
        """Return ``(records, truncated)``.

        A short length header, or a declared length running past EOF, ends
        counting for this stream.
        """
        count = 0
        while True:
            header = stream.read(_LENGTH_HEADER.size)
            if not header:
                return count, False
            if len(header) < _LENGTH_HEADER.size:
                return count, True
            (length,) = _LENGTH_HEADER.unpack(header)
            body = stream.read(length)
            if len(body) < length:
                return count, True
            count += 1


CODECS: dict[str, LogCodec] = {
    TextLineCodec.name: TextLineCodec(),
    LengthPrefixedCodec.name: LengthPrefixedCodec(),
}


def get_codec(name: str) -> LogCodec:
    try:
        return CODECS[name]
    except KeyError:
        raise ValueError(f"unknown batch log format: {name!r}") from None


def codec_for_filename(name: str) -> Optional[LogCodec]:
    """Text logs need the full ``.event-ingest.txt`` suffix; any ``*.binlog`` is binary."""
    if name.endswith(FILE_STEM_SUFFIX + TextLineCodec.extension):
        return CODECS[TextLineCodec.name]
    if name.endswith(LengthPrefixedCodec.extension):
        return CODECS[LengthPrefixedCodec.name]
    return None


def resolve_events_dir(preferred: str | Path, fallback: str | Path) -> Path:
    """Return ``preferred`` if it can be created, else ``fallback``."""
    p = Path(preferred)
    try:
        p.mkdir(parents=True, exist_ok=True)
        return p
    except OSError:
        logger.warning("batch_log.events_dir_fallback preferred=%s fallback=%s", p, fallback)
    fb = Path(fallback)
    try:
        fb.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Surfaced on the first append.
        logger.exception("batch_log.events_dir_unavailable path=%s", fb)
    return fb


class BatchLogWriter:
    """Appends framed records to ``{directory}/{prefix}.event-ingest{ext}``.

    Appends to the same path are serialized by one of ``LOCK_STRIPES`` locks
    picked by path hash; the lock set is fixed no matter how many batch files
    get written. Each call issues a single write of fully-buffered bytes. A
    failed write is rolled back to the previous end of file so no partial
    record remains.
    """

    def __init__(self, codec: Optional[LogCodec] = None) -> None:
        self.codec: LogCodec = codec or CODECS["text"]
        self._locks: tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def filename(self, prefix: str) -> str:
        return f"{prefix}{FILE_STEM_SUFFIX}{self.codec.extension}"

    def path_for(self, directory: str | Path, prefix: str) -> Path:
        return Path(directory) / self.filename(prefix)

    def _lock_for(self, path: Path) -> threading.Lock:
        return self._locks[hash(str(path.resolve())) % len(self._locks)]

    def append_sync(
        self,
        directory: str | Path,
        prefix: str,
        events: Iterable[Event],
        *,
        saved_at: Optional[str] = None,
    ) -> Path:
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BatchLogError(
                f"failed to create events directory: {exc}", details={"directory": str(directory)}
            ) from exc

        stamp = saved_at or saved_at_stamp()
        data = b"".join(self.codec.frame(encode_record(e, stamp)) for e in events)
        path = self.path_for(directory, prefix)
        if not data:
            return path

        with self._lock_for(path):
            try:
                with path.open("ab") as f:
                    start = f.seek(0, os.SEEK_END)
                    try:
                        f.write(data)
                        f.flush()
                    except OSError:
                        f.truncate(start)
                        raise
            except OSError as exc:
                raise BatchLogError(
                    f"failed to write event data: {exc}", details={"file": path.name}
                ) from exc
        return path

    async def append(self, directory: str | Path, prefix: str, event: Event) -> Path:
        return await asyncio.to_thread(self.append_sync, directory, prefix, [event])

    async def append_many(self, directory: str | Path, prefix: str, events: Iterable[Event]) -> Path:
        """Append a whole batch under one lock acquisition, sharing one ``saved_at``."""
        return await asyncio.to_thread(self.append_sync, directory, prefix, list(events))
