from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from event_ingest.core.scheduler import GenerationController
from event_ingest.core.service import EventIngestService
from event_ingest.db.session import get_db_session
from event_ingest.utils.exceptions import IngestException


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db_session():
        yield session


def get_service(request: Request) -> EventIngestService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise IngestException("Service not initialized", status_code=503)
    return service


def get_controller(request: Request) -> GenerationController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise IngestException("Service not initialized", status_code=503)
    return controller
