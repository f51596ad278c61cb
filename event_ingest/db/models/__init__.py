from event_ingest.db.base import Base
from .pipeline_tracking import PipelineTracking, STAGE_STATUSES

__all__ = [
    "Base",
    "PipelineTracking",
    "STAGE_STATUSES",
]
