from __future__ import annotations

"""Core data types for articles, chunks and retrieval."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Article:
    """Raw news article handed to the ingestion pipeline."""
    title: str
    content: str
    source: str = "unknown"
    link: str | None = None
    pub_date: str | None = None
    id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def document_metadata(self) -> dict[str, Any]:
        """Return metadata carried onto every chunk of this article."""
        metadata: dict[str, Any] = {"title": self.title, "source": self.source}
        if self.link:
            metadata["link"] = self.link
        if self.pub_date:
            metadata["pub_date"] = self.pub_date
        metadata.update(self.metadata)
        return metadata


@dataclass(frozen=True)
class Chunk:
    """Bounded text segment of an article with positional metadata."""
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorRecord:
    """Unit persisted in the vector index."""
    vector: list[float]
    payload: dict[str, Any]
    id: str | None = None


@dataclass(frozen=True)
class RetrievedDocument:
    """Search result with similarity score."""
    text: str
    metadata: dict[str, Any]
    score: float
