from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FileRegisterRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    shards: List[int] = Field(...)


class FileRegisterResponse(BaseModel):
    filename: str
    shards: List[int]
    created: bool


class IngestDoneRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)


class IngestDoneResponse(BaseModel):
    filename: str
    updated_rows: int


class TrackingRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    shard: int
    event_ingest_status: str
    transform_status: str
    load_status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TrackingRowsResponse(BaseModel):
    filename: str
    items: List[TrackingRow]
