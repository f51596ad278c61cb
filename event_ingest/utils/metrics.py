from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


HTTP_REQUESTS_TOTAL = Counter(
    "ingest_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "ingest_http_request_duration_seconds",
    "HTTP request duration (seconds)",
    ["method", "path"],
)


EVENTS_WRITTEN_TOTAL = Counter(
    "ingest_events_written_total",
    "Events appended to the batch log",
    ["source"],
)

GENERATION_BATCHES_TOTAL = Counter(
    "ingest_generation_batches_total",
    "Batch generation attempts",
    ["result"],
)

HANDOFF_REQUESTS_TOTAL = Counter(
    "ingest_handoff_requests_total",
    "Pipeline coordinator notifications",
    ["call", "result"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
