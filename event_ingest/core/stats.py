from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from pydantic import BaseModel, Field

from event_ingest.core.batch_log import codec_for_filename

logger = logging.getLogger(__name__)


class FileStats(BaseModel):
    size: int
    events: int
    modified_at: datetime
    format: str
    truncated: bool = False


class EventStats(BaseModel):
    total_files: int = 0
    total_events: int = 0
    events_directory: str
    files: Dict[str, FileStats] = Field(default_factory=dict)


def get_stats(directory: str | Path) -> EventStats:
    """Count records in every batch log under ``directory``.

    A corrupt or truncated file contributes the records read before the damage;
    unreadable files are skipped. A missing directory yields zero stats.
    """
    base = Path(directory)
    stats = EventStats(events_directory=str(base))
    if not base.is_dir():
        return stats

    for p in sorted(base.iterdir()):
        codec = codec_for_filename(p.name)
        if codec is None or not p.is_file():
            continue
        try:
            st = p.stat()
            with p.open("rb") as f:
                count, truncated = codec.count_records(f)
        except OSError:
            logger.warning("stats.file_unreadable file=%s", p.name, exc_info=True)
            continue

        if truncated:
            logger.warning("stats.corrupt_record file=%s counted=%d", p.name, count)

        stats.total_files += 1
        stats.total_events += count
        stats.files[p.name] = FileStats(
            size=st.st_size,
            events=count,
            modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            format=codec.name,
            truncated=truncated,
        )
    return stats
