from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from event_ingest.api.router import api_router
from event_ingest.api.v1 import health, pipeline
from event_ingest.config import settings
from event_ingest.core.handoff import build_notifier
from event_ingest.core.scheduler import AutoBatchScheduler, GenerationController
from event_ingest.core.service import EventIngestService
from event_ingest.db.session import create_all, engine
from event_ingest.logging_config import configure_logging
from event_ingest.utils.error_codes import ERROR_MESSAGES, ErrorCode
from event_ingest.utils.exceptions import IngestException


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app.state._bg_stop_event = asyncio.Event()
    app.state._bg_tasks = []

    if settings.DB_AUTO_CREATE:
        # The tracking table is optional for event generation; a broken DB must not block startup.
        try:
            await create_all()
        except Exception:
            logger.exception("lifespan.db_create_all_failed (non-fatal)")

    service = EventIngestService.from_settings(settings, notifier=build_notifier(settings))
    controller = GenerationController(service)
    app.state.service = service
    app.state.controller = controller
    logger.info(
        "lifespan.started events_dir=%s log_format=%s shards=%d",
        service.events_dir,
        service.writer.codec.name,
        service.notifier.shards_count,
    )

    if settings.EVENTS_AUTO_GENERATION_ENABLED:
        scheduler = AutoBatchScheduler(
            service,
            interval_seconds=settings.EVENTS_GENERATION_INTERVAL,
            max_batch=settings.batch_size_cap,
        )
        task = asyncio.create_task(scheduler.run(app.state._bg_stop_event), name="auto-generation")
        app.state._bg_tasks.append(task)

    try:
        yield
    finally:
        app.state._bg_stop_event.set()

        try:
            await controller.aclose()
        except Exception:
            logger.exception("generation.controller_close_failed")

        tasks = list(getattr(app.state, "_bg_tasks", []) or [])
        if tasks:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        app.state._bg_tasks = []

        try:
            await service.aclose()
        except Exception:
            logger.exception("handoff.close_failed")
        app.state.service = None
        app.state.controller = None

        try:
            await engine.dispose()
        except Exception:
            pass
        logger.info("lifespan.stopped")


app = FastAPI(title="Event Ingest", debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    from event_ingest.utils.request_id import bind_request_id, new_request_id, reset_request_id, validate_request_id

    rid = validate_request_id(request.headers.get("X-Request-ID")) or new_request_id()
    token = bind_request_id(rid)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)

    response.headers["X-Request-ID"] = rid
    return response


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    if not settings.METRICS_ENABLED:
        return await call_next(request)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed_s = time.perf_counter() - start

    try:
        from event_ingest.utils.metrics import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION_SECONDS

        # Route template keeps label cardinality bounded.
        route_path = getattr(request.scope.get("route"), "path", None)
        path_label = route_path if isinstance(route_path, str) and route_path else "__unmatched__"
        method = request.method
        status = str(getattr(response, "status_code", 0))

        HTTP_REQUESTS_TOTAL.labels(method=method, path=path_label, status=status).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path_label).observe(elapsed_s)
    except Exception:
        pass

    return response


@app.exception_handler(IngestException)
async def ingest_exception_handler(request: Request, exc: IngestException):
    if exc.status_code >= 500:
        logger.error("request.failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ErrorCode.E002.value,
                "message": ERROR_MESSAGES[ErrorCode.E002],
                "details": {"errors": jsonable_encoder(exc.errors())},
            }
        },
    )


app.include_router(health.router, tags=["Health"])
app.include_router(api_router, prefix="/api/v1")
# The coordinator endpoints are also served at their historical root path.
app.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])


if settings.METRICS_ENABLED:

    @app.get("/metrics")
    async def metrics():
        from event_ingest.utils.metrics import render_metrics

        payload, content_type = render_metrics()
        return Response(content=payload, media_type=content_type)
