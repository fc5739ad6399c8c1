from __future__ import annotations

"""FastAPI application entrypoint for the news chat service."""

import json
import logging
import uuid
from contextlib import aclosing, asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from src.app.dependencies import (
    get_chat_service,
    get_embedding_config_report,
    get_feed_config,
    get_ingestion_pipeline,
    get_vector_index,
)
from src.app.metrics import (
    metrics_middleware,
    metrics_response,
    record_chat_turn,
    record_ingested_chunks,
    record_stream_disconnect,
)
from src.app.schemas import (
    ApiHealthResponse,
    ChatMessageOut,
    ClearedResponse,
    EmbeddingHealthResponse,
    ErrorResponse,
    FeedIngestRequest,
    HistoryResponse,
    IngestRecord,
    IngestRequest,
    IngestResponse,
    MessageRequest,
    MessageResponse,
    SessionCreatedResponse,
    StatsHealthResponse,
    StatsResponse,
)
from src.app.settings import settings
from src.chat.models import ChatMessage, StreamEvent
from src.loaders.rss import collect_articles
from src.rag.errors import ChatError, NewsRAGError, NotFoundError
from src.rag.ingestion import IngestionReport
from src.rag.types import Article

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Prepare the vector collection on startup and drain history writes on shutdown."""
    try:
        await get_vector_index().ensure_collection()
    except NewsRAGError as exc:
        logger.error("vector_index_unavailable", extra={"detail": type(exc).__name__})
    yield
    await get_chat_service().flush()


app = FastAPI(title="News RAG Chat", version="0.1.0", lifespan=lifespan)


def _message_out(message: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut(**message.to_dict())


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(message=message).model_dump()
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/api/health", response_model=ApiHealthResponse)
async def api_health() -> ApiHealthResponse:
    """Health probe with a timestamp for browser clients."""
    return ApiHealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())


@app.get("/stats", response_model=StatsResponse)
async def stats() -> StatsResponse:
    """Return vector index stats."""
    return StatsResponse(**(await get_vector_index().stats()))


@app.get("/stats/health", response_model=StatsHealthResponse)
async def stats_health() -> StatsHealthResponse:
    """Return vector index health status."""
    return StatsHealthResponse(**(await get_vector_index().health()))


@app.get("/stats/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health() -> EmbeddingHealthResponse:
    """Return embedding configuration health checks."""
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


def _ingest_response(report: IngestionReport, request_id: str) -> IngestResponse:
    logger.info(
        "ingest_request_complete",
        extra={
            "request_id": request_id,
            "success": report.success,
            "articles": report.article_count,
            "chunks": report.chunk_count,
        },
    )
    if report.success:
        record_ingested_chunks(report.chunk_count)
    return IngestResponse(
        success=report.success,
        message=report.message,
        article_count=report.article_count,
        chunk_count=report.chunk_count,
        records=[IngestRecord(**record.__dict__) for record in report.records],
    )


@app.post("/api/ingest", response_model=IngestResponse)
async def ingest(request: IngestRequest, http_request: Request) -> IngestResponse:
    """Chunk, embed and store news articles."""
    request_id = getattr(http_request.state, "request_id", str(uuid.uuid4()))
    articles = [Article(**article.model_dump()) for article in request.articles]
    report = await get_ingestion_pipeline().run(articles)
    return _ingest_response(report, request_id)


@app.post("/api/admin/ingest", response_model=IngestResponse)
async def ingest_feeds(request: FeedIngestRequest, http_request: Request):
    """Collect articles from RSS/Atom feeds, then ingest them."""
    request_id = getattr(http_request.state, "request_id", str(uuid.uuid4()))
    feeds = request.feeds or settings.rss_feeds
    if not feeds:
        return _error(400, "No feeds given and RAG_RSS_FEEDS is empty")
    config = get_feed_config()
    if request.max_items_per_feed is not None:
        config = replace(config, max_items_per_feed=request.max_items_per_feed)
    articles = await collect_articles(feeds, config)
    logger.info(
        "feed_ingest_collected",
        extra={"request_id": request_id, "feeds": len(feeds), "articles": len(articles)},
    )
    report = await get_ingestion_pipeline().run(articles)
    return _ingest_response(report, request_id)


@app.post("/api/chat/session", status_code=201, response_model=SessionCreatedResponse)
async def create_session() -> SessionCreatedResponse:
    """Start a new chat session."""
    session_id = await get_chat_service().create_session()
    return SessionCreatedResponse(session_id=session_id)


@app.get("/api/chat/session/{session_id}", response_model=HistoryResponse)
async def get_history(session_id: str):
    """Return the stored messages of a session."""
    try:
        history = await get_chat_service().get_history(session_id)
    except NotFoundError:
        return _error(404, "Session not found or expired")
    return HistoryResponse(
        session_id=session_id,
        history=[_message_out(message) for message in history],
    )


@app.post("/api/chat/session/{session_id}/message", response_model=MessageResponse)
async def send_message(session_id: str, request: MessageRequest, http_request: Request):
    """Answer one message and return the assistant reply."""
    request_id = getattr(http_request.state, "request_id", str(uuid.uuid4()))
    try:
        turn = await get_chat_service().send_message(session_id, request.message)
    except ChatError as exc:
        logger.error(
            "chat_request_failed",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(500, str(exc))
    record_chat_turn("message", turn.cached)
    return MessageResponse(response=_message_out(turn.message), cached=turn.cached)


async def _sse(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Encode stream events as server-sent event frames."""
    terminal = False
    try:
        async with aclosing(events):
            async for event in events:
                if event.type == "end":
                    terminal = True
                    record_chat_turn("stream", bool(event.data.get("cached")))
                elif event.type == "error":
                    terminal = True
                yield f"data: {json.dumps(event.to_dict())}\n\n"
    finally:
        if not terminal:
            record_stream_disconnect()


@app.post("/api/chat/session/{session_id}/stream")
async def stream_message(
    session_id: str, request: MessageRequest, http_request: Request
) -> StreamingResponse:
    """Stream the assistant reply as server-sent events."""
    events = get_chat_service().stream_message(
        session_id, request.message, is_disconnected=http_request.is_disconnected
    )
    return StreamingResponse(
        _sse(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.delete("/api/chat/session/{session_id}", response_model=ClearedResponse)
async def clear_session(session_id: str) -> ClearedResponse:
    """Reset a session's history."""
    await get_chat_service().clear_session(session_id)
    return ClearedResponse()
