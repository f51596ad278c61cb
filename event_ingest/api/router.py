from fastapi import APIRouter

from event_ingest.api.v1 import events, pipeline

api_router = APIRouter()

api_router.include_router(events.router, prefix="/events", tags=["Events"])
api_router.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])
