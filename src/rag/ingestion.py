from __future__ import annotations

"""Article ingestion: chunk, embed, then upsert into the vector index."""

import logging
from dataclasses import dataclass, field
from typing import Sequence

from src.loaders.chunking import Chunker
from src.rag.embeddings import EmbeddingGateway
from src.rag.errors import IngestionError, NewsRAGError
from src.rag.types import Article, VectorRecord
from src.vectorstore.base import VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordOutcome:
    """Stored vector record for one chunk."""
    record_id: str
    doc_id: str
    chunk_index: int


@dataclass(frozen=True)
class IngestionResult:
    article_count: int
    chunk_count: int
    records: list[RecordOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class IngestionReport:
    """Service-facing outcome of an ingestion run."""
    success: bool
    message: str
    article_count: int = 0
    chunk_count: int = 0
    records: list[RecordOutcome] = field(default_factory=list)


@dataclass
class IngestionPipeline:
    chunker: Chunker
    gateway: EmbeddingGateway
    index: VectorIndex

    async def ingest(self, articles: Sequence[Article]) -> IngestionResult:
        """Chunk, embed and store articles; raise IngestionError on failure."""
        chunks = self.chunker.process_documents(articles)
        logger.info(
            "ingestion_chunked",
            extra={"articles": len(articles), "chunks": len(chunks)},
        )
        if not chunks:
            return IngestionResult(article_count=len(articles), chunk_count=0)
        try:
            embeddings = await self.gateway.embed_batch([chunk.text for chunk in chunks])
            placeholders = sum(1 for vector in embeddings if not any(vector))
            if placeholders:
                logger.warning(
                    "ingestion_zero_vectors",
                    extra={"placeholders": placeholders, "chunks": len(chunks)},
                )
            records = [
                VectorRecord(vector=vector, payload={"text": chunk.text, **chunk.metadata})
                for chunk, vector in zip(chunks, embeddings)
            ]
            ids = await self.index.upsert(records)
        except NewsRAGError as exc:
            logger.error("ingestion_failed", extra={"detail": type(exc).__name__})
            raise IngestionError(f"Failed to ingest articles: {exc}") from exc
        outcomes = [
            RecordOutcome(
                record_id=record_id,
                doc_id=str(chunk.metadata["doc_id"]),
                chunk_index=int(chunk.metadata["chunk_index"]),
            )
            for record_id, chunk in zip(ids, chunks)
        ]
        logger.info("ingestion_complete", extra={"records": len(outcomes)})
        return IngestionResult(
            article_count=len(articles),
            chunk_count=len(chunks),
            records=outcomes,
        )

    async def run(self, articles: Sequence[Article]) -> IngestionReport:
        """Ingest articles and report success or failure without raising."""
        try:
            result = await self.ingest(articles)
        except IngestionError as exc:
            return IngestionReport(success=False, message=str(exc), article_count=len(articles))
        return IngestionReport(
            success=True,
            message=(
                f"Successfully ingested {result.chunk_count} chunks "
                f"from {result.article_count} articles"
            ),
            article_count=result.article_count,
            chunk_count=result.chunk_count,
            records=result.records,
        )
