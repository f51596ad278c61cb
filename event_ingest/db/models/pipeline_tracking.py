from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from event_ingest.db.base import Base

STAGE_STATUSES: tuple[str, ...] = ("new", "started", "done", "failed")

_STATUS_SQL = ",".join(f"'{s}'" for s in STAGE_STATUSES)


class PipelineTracking(Base):
    """One row per (batch filename, shard); each pipeline stage tracks its own status."""

    __tablename__ = "pipeline_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    shard: Mapped[int] = mapped_column(Integer, nullable=False)

    event_ingest_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="new")
    transform_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="new")
    load_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="new")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("filename", "shard", name="unique_filename_shard"),
        CheckConstraint(f"event_ingest_status IN ({_STATUS_SQL})", name="chk_pipeline_tracking_ingest"),
        CheckConstraint(f"transform_status IN ({_STATUS_SQL})", name="chk_pipeline_tracking_transform"),
        CheckConstraint(f"load_status IN ({_STATUS_SQL})", name="chk_pipeline_tracking_load"),
        CheckConstraint("shard >= 0", name="chk_pipeline_tracking_shard"),
    )
