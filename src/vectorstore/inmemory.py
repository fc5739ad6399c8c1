from __future__ import annotations

"""In-memory vector index for local testing and small datasets."""

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from src.rag.types import RetrievedDocument, VectorRecord
from src.vectorstore.base import assign_ids, check_dimensions, split_payload


@dataclass
class _StoredPoint:
    vector: list[float]
    payload: dict[str, Any]


@dataclass
class InMemoryVectorStore:
    """Simple in-memory vector index with cosine similarity search."""
    dimension: int
    collection: str = "news_articles"
    _collections: dict[str, dict[str, _StoredPoint]] = field(default_factory=dict, repr=False)

    @property
    def points(self) -> dict[str, _StoredPoint]:
        return self._collections.setdefault(self.collection, {})

    async def ensure_collection(self) -> None:
        """Create the collection when it does not exist yet."""
        if self.collection not in self._collections:
            self._collections[self.collection] = {}

    async def upsert(self, records: Sequence[VectorRecord]) -> list[str]:
        """Validate and store records, replacing any with the same id."""
        check_dimensions([record.vector for record in records], self.dimension)
        ids = assign_ids(records)
        await self.ensure_collection()
        for record_id, record in zip(ids, records):
            self.points[record_id] = _StoredPoint(
                vector=[float(value) for value in record.vector],
                payload=dict(record.payload),
            )
        return ids

    async def search(
        self,
        query_vector: list[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[RetrievedDocument]:
        """Return the closest records by cosine similarity."""
        check_dimensions([query_vector], self.dimension)
        if limit <= 0:
            return []
        scored: list[RetrievedDocument] = []
        for point in self.points.values():
            score = self._cosine_similarity(query_vector, point.vector)
            if score_threshold is not None and score < score_threshold:
                continue
            text, metadata = split_payload(point.payload)
            scored.append(RetrievedDocument(text=text, metadata=metadata, score=score))
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    async def clear(self) -> None:
        """Drop and recreate the collection."""
        self._collections.pop(self.collection, None)
        await self.ensure_collection()

    def _cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Compute cosine similarity between two vectors."""
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(y * y for y in b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (norm_a * norm_b)

    async def stats(self) -> dict[str, Any]:
        """Return basic stats for the vector index."""
        return {
            "backend": "memory",
            "document_count": len(self.points),
            "embedding_dimension": self.dimension,
            "collection": self.collection,
        }

    async def health(self) -> dict[str, Any]:
        """Return health information for the vector index."""
        return {
            "backend": "memory",
            "ok": True,
            "collection": self.collection,
        }
