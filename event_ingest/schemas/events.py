from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class EventAccepted(BaseModel):
    message: str = "Event accepted"
    event_type: int
    filename: str


class GenerateRequest(BaseModel):
    count: int = Field(..., ge=1, le=1000)


class GenerateResponse(BaseModel):
    message: str = "Events generated successfully"
    count: int
    filename: str


class GenerationStartRequest(BaseModel):
    interval_seconds: int = Field(..., ge=1, le=3600)
    event_types: List[int] = Field(default_factory=list)


class GenerationStatus(BaseModel):
    running: bool
    interval_seconds: Optional[float] = None
    event_types: List[int] = Field(default_factory=list)


class GenerationStateResponse(GenerationStatus):
    message: str
