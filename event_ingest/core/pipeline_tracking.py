from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import func, select, update as sql_update
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from event_ingest.db.models.pipeline_tracking import PipelineTracking

logger = logging.getLogger(__name__)


def _dialect_name(session: AsyncSession) -> str | None:
    try:
        bind = session.get_bind()
    except Exception:
        bind = getattr(session, "bind", None)
    try:
        return bind.dialect.name if bind is not None else None
    except AttributeError:
        return None


def _insert_ignoring_duplicates(dialect_name: str | None, values: dict):
    table = PipelineTracking.__table__
    if dialect_name == "sqlite":
        return sqlite_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=[table.c.filename, table.c.shard]
        )
    if dialect_name in {"postgresql", "postgres"}:
        return pg_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=[table.c.filename, table.c.shard]
        )
    if dialect_name == "mysql":
        stmt = mysql_insert(table).values(**values)
        return stmt.on_duplicate_key_update(filename=table.c.filename)
    raise RuntimeError(f"Unsupported SQL dialect for pipeline_tracking upsert: {dialect_name!r}")


async def register_file(session: AsyncSession, filename: str, shards: Sequence[int]) -> bool:
    """Insert one ``(filename, shard)`` row per shard with ingest ``started``.

    Rows that already exist are left exactly as they are, whatever their stage
    statuses. Returns True if at least one row was created.
    """
    dialect_name = _dialect_name(session)
    any_created = False
    try:
        for shard in shards:
            stmt = _insert_ignoring_duplicates(
                dialect_name,
                {
                    "filename": filename,
                    "shard": int(shard),
                    "event_ingest_status": "started",
                    "transform_status": "new",
                    "load_status": "new",
                },
            )
            result = await session.execute(stmt)
            if result.rowcount == 1:
                any_created = True
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("pipeline_tracking.register filename=%s shards=%s created=%s", filename, list(shards), any_created)
    return any_created


async def mark_ingest_done(session: AsyncSession, filename: str) -> int:
    """Set ingest to ``done`` on every shard row of ``filename``; returns the row count."""
    stmt = (
        sql_update(PipelineTracking)
        .where(PipelineTracking.filename == filename)
        .values(event_ingest_status="done", updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    updated = int(result.rowcount or 0)
    logger.info("pipeline_tracking.ingest_done filename=%s updated_rows=%d", filename, updated)
    return updated


async def list_file_rows(session: AsyncSession, filename: str) -> list[PipelineTracking]:
    return list(
        (
            await session.execute(
                select(PipelineTracking)
                .where(PipelineTracking.filename == filename)
                .order_by(PipelineTracking.shard.asc())
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    )
