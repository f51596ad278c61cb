from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from event_ingest.api import deps
from event_ingest.core import pipeline_tracking
from event_ingest.schemas.pipeline import (
    FileRegisterRequest,
    FileRegisterResponse,
    IngestDoneRequest,
    IngestDoneResponse,
    TrackingRow,
    TrackingRowsResponse,
)
from event_ingest.utils.exceptions import BadRequestException

router = APIRouter()


@router.post("/files/register", response_model=FileRegisterResponse)
async def register_file(
    req: FileRegisterRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> FileRegisterResponse:
    if any(s < 0 for s in req.shards):
        raise BadRequestException("shards must be non-negative", details={"shards": req.shards})
    created = await pipeline_tracking.register_file(db, req.filename, req.shards)
    return FileRegisterResponse(filename=req.filename, shards=req.shards, created=created)


@router.post("/stages/event-ingest/done", response_model=IngestDoneResponse)
async def event_ingest_done(
    req: IngestDoneRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> IngestDoneResponse:
    updated = await pipeline_tracking.mark_ingest_done(db, req.filename)
    return IngestDoneResponse(filename=req.filename, updated_rows=updated)


@router.get("/files/{filename}", response_model=TrackingRowsResponse)
async def get_file_rows(
    filename: str,
    db: AsyncSession = Depends(deps.get_db),
) -> TrackingRowsResponse:
    rows = await pipeline_tracking.list_file_rows(db, filename)
    return TrackingRowsResponse(filename=filename, items=[TrackingRow.model_validate(r) for r in rows])
