from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ArticleIn(BaseModel):
    id: str | None = None
    title: str = ""
    content: str = Field(min_length=1)
    source: str = "unknown"
    link: str | None = None
    pub_date: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    articles: list[ArticleIn] = Field(min_length=1)


class IngestRecord(BaseModel):
    record_id: str
    doc_id: str
    chunk_index: int


class IngestResponse(BaseModel):
    success: bool
    message: str
    article_count: int = 0
    chunk_count: int = 0
    records: list[IngestRecord] = Field(default_factory=list)


class MessageRequest(BaseModel):
    message: str = Field(min_length=1)


class Source(BaseModel):
    title: str | None = None
    source: str | None = None
    url: str | None = None
    published: str | None = None
    score: float | None = None


class ChatMessageOut(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: str
    sources: list[Source] | None = None
    partial: bool = False


class SessionCreatedResponse(BaseModel):
    success: bool = True
    session_id: str
    message: str = "Chat session created successfully"


class HistoryResponse(BaseModel):
    success: bool = True
    session_id: str
    history: list[ChatMessageOut]


class MessageResponse(BaseModel):
    success: bool = True
    response: ChatMessageOut
    cached: bool = False


class ClearedResponse(BaseModel):
    success: bool = True
    message: str = "Chat session cleared successfully"


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class StatsResponse(BaseModel):
    backend: str
    document_count: int
    embedding_dimension: int
    collection: str | None = None


class StatsHealthResponse(BaseModel):
    backend: str
    ok: bool
    detail: str | None = None
    collection: str | None = None


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None = None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


class FeedIngestRequest(BaseModel):
    feeds: list[str] = Field(default_factory=list)
    max_items_per_feed: int | None = Field(default=None, ge=1)


class ApiHealthResponse(BaseModel):
    status: str
    timestamp: str
