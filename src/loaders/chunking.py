from __future__ import annotations

"""Boundary-aware character chunking for news articles."""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from src.rag.types import Article, Chunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkerConfig:
    """Chunk sizing and break-point search limits, in characters."""
    max_chunk_size: int = 6000
    overlap: int = 200
    min_chunk_size: int = 100
    paragraph_lookback: int = 200
    sentence_lookback: int = 100
    word_lookback: int | None = None


def _find_break(
    text: str, marker: str, start: int, end: int, lookback: int | None
) -> int | None:
    """Return the boundary just after the last marker before end, if close enough."""
    position = text.rfind(marker, start, end)
    if position <= start:
        return None
    if lookback is not None and position <= end - lookback:
        return None
    return position + len(marker)


def chunk_text(
    text: str,
    max_size: int,
    overlap: int,
    min_size: int = 100,
    paragraph_lookback: int = 200,
    sentence_lookback: int = 100,
    word_lookback: int | None = None,
) -> list[str]:
    """Split text into overlapping windows that prefer natural break points.

    Windows shorter than ``min_size`` are dropped, so a short trailing
    fragment of a long text may not appear in any chunk.
    """
    if len(text) <= max_size:
        return [text]

    chunks: list[str] = []
    length = len(text)
    start = 0
    while start < length:
        end = start + max_size
        if end < length:
            boundary = (
                _find_break(text, "\n\n", start, end, paragraph_lookback)
                or _find_break(text, ". ", start, end, sentence_lookback)
                or _find_break(text, " ", start, end, word_lookback)
            )
            if boundary is not None:
                end = boundary
        chunk = text[start:end]
        if len(chunk) >= min_size:
            chunks.append(chunk)
        if end >= length:
            break
        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start
    return chunks


@dataclass
class Chunker:
    """Turn articles into annotated chunks."""
    config: ChunkerConfig = field(default_factory=ChunkerConfig)

    def chunk_text(self, text: str) -> list[str]:
        """Chunk text with the configured limits."""
        return chunk_text(
            text,
            max_size=self.config.max_chunk_size,
            overlap=self.config.overlap,
            min_size=self.config.min_chunk_size,
            paragraph_lookback=self.config.paragraph_lookback,
            sentence_lookback=self.config.sentence_lookback,
            word_lookback=self.config.word_lookback,
        )

    def process_documents(self, articles: Iterable[Article]) -> list[Chunk]:
        """Chunk each article and merge its metadata into every chunk."""
        chunks: list[Chunk] = []
        for doc_index, article in enumerate(articles):
            if not article.content or not article.content.strip():
                logger.warning(
                    "chunking_skipped_empty_article",
                    extra={"doc_index": doc_index, "doc_id": article.id},
                )
                continue
            pieces = self.chunk_text(article.content)
            total = len(pieces)
            base_metadata = article.document_metadata()
            for chunk_index, piece in enumerate(pieces):
                metadata = dict(base_metadata)
                metadata.update(
                    {
                        "doc_id": article.id or str(doc_index),
                        "doc_title": article.title or f"Document {doc_index}",
                        "chunk_index": chunk_index,
                        "total_chunks": total,
                    }
                )
                chunks.append(Chunk(text=piece, metadata=metadata))
        return chunks
