from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from event_ingest.api import deps
from event_ingest.config import Settings, get_settings
from event_ingest.core.events.models import Event, EventIn, utc_now_millis
from event_ingest.core.events.validation import validate_event
from event_ingest.core.scheduler import GenerationController
from event_ingest.core.service import EventIngestService
from event_ingest.core.stats import EventStats
from event_ingest.schemas.events import (
    EventAccepted,
    GenerateRequest,
    GenerateResponse,
    GenerationStartRequest,
    GenerationStateResponse,
    GenerationStatus,
)
from event_ingest.utils.exceptions import (
    BadRequestException,
    EventValidationError,
    NotSupportedException,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=EventAccepted, status_code=201)
async def submit_event(
    request: Request,
    service: EventIngestService = Depends(deps.get_service),
    settings: Settings = Depends(get_settings),
) -> EventAccepted:
    body = await request.body()
    if len(body) > settings.EVENTS_MAX_PAYLOAD_SIZE:
        raise EventValidationError(
            "payload", f"Payload exceeds maximum size of {settings.EVENTS_MAX_PAYLOAD_SIZE} bytes"
        )
    try:
        event_in = EventIn.model_validate_json(body)
    except ValidationError as exc:
        errors = jsonable_encoder(exc.errors(include_url=False))
        raise BadRequestException("Invalid request format", details={"errors": errors}) from None

    try:
        payload = await asyncio.wait_for(
            asyncio.to_thread(validate_event, event_in.event_type, event_in.payload),
            timeout=settings.EVENTS_VALIDATION_TIMEOUT,
        )
    except asyncio.TimeoutError:
        raise BadRequestException("Event validation timed out") from None

    event = Event(
        timestamp=event_in.timestamp or utc_now_millis(),
        event_type=int(event_in.event_type),
        payload=payload.to_json_bytes(),
    )
    filename = await service.save_event(event, source="api")
    return EventAccepted(event_type=event.event_type, filename=filename)


@router.post("/generate", response_model=GenerateResponse)
async def generate_events(
    req: GenerateRequest,
    service: EventIngestService = Depends(deps.get_service),
) -> GenerateResponse:
    prefix = await service.generate_test_events(req.count)
    return GenerateResponse(count=req.count, filename=service.writer.filename(prefix))


@router.post("/generation/start", response_model=GenerationStateResponse)
async def start_generation(
    req: GenerationStartRequest,
    controller: GenerationController = Depends(deps.get_controller),
) -> GenerationStateResponse:
    status = await controller.start(req.interval_seconds, req.event_types)
    return GenerationStateResponse(message="Event generation started", **status)


@router.post("/generation/stop", response_model=GenerationStateResponse)
async def stop_generation(
    controller: GenerationController = Depends(deps.get_controller),
) -> GenerationStateResponse:
    status = await controller.stop()
    return GenerationStateResponse(message="Event generation stopped", **status)


@router.get("/generation/status", response_model=GenerationStatus)
async def generation_status(
    controller: GenerationController = Depends(deps.get_controller),
) -> GenerationStatus:
    return GenerationStatus(**(await controller.status()))


@router.get("/stats", response_model=EventStats)
async def get_event_stats(
    service: EventIngestService = Depends(deps.get_service),
) -> EventStats:
    return await asyncio.to_thread(service.get_stats)


@router.get("/{event_id}")
async def get_event(event_id: str):
    raise NotSupportedException(
        f"get by id not supported in file-only mode: {event_id}", details={"event_id": event_id}
    )
