from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from src.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
CHAT_TURNS = Counter(
    "news_rag_chat_turns_total",
    "Chat turns answered",
    ["mode", "cached"],
)
INGESTED_CHUNKS = Counter(
    "news_rag_ingested_chunks_total",
    "Article chunks stored in the vector index",
)
STREAM_DISCONNECTS = Counter(
    "news_rag_stream_disconnects_total",
    "Streaming responses cut short by the client",
)


def _route_path(request: Request) -> str:
    """Use the route template so session ids do not become label values."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    if request.url.path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        path = _route_path(request)
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def record_chat_turn(mode: str, cached: bool) -> None:
    if settings.metrics_enabled:
        CHAT_TURNS.labels(mode, str(cached).lower()).inc()


def record_ingested_chunks(count: int) -> None:
    if settings.metrics_enabled and count:
        INGESTED_CHUNKS.inc(count)


def record_stream_disconnect() -> None:
    if settings.metrics_enabled:
        STREAM_DISCONNECTS.inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
