from __future__ import annotations

"""Vector index contract and helpers shared by the backends."""

import time
from typing import Any, Protocol, Sequence

from src.rag.errors import DimensionMismatchError, ProviderError
from src.rag.types import RetrievedDocument, VectorRecord


class VectorStoreError(ProviderError):
    """Raised when the vector database rejects or fails an operation."""
    pass


class VectorIndex(Protocol):
    """Protocol for vector indexes backing retrieval."""
    dimension: int

    async def ensure_collection(self) -> None:
        ...

    async def upsert(self, records: Sequence[VectorRecord]) -> list[str]:
        ...

    async def search(
        self,
        query_vector: list[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[RetrievedDocument]:
        ...

    async def clear(self) -> None:
        ...

    async def stats(self) -> dict[str, Any]:
        ...

    async def health(self) -> dict[str, Any]:
        ...


def check_dimensions(vectors: Sequence[Sequence[float]], dimension: int) -> None:
    """Raise if any vector length differs from the configured dimension."""
    for vector in vectors:
        if len(vector) != dimension:
            raise DimensionMismatchError(dimension, len(vector))


def assign_ids(records: Sequence[VectorRecord]) -> list[str]:
    """Return record ids, generating time-based ids where missing."""
    stamp = time.time_ns()
    return [record.id or f"{stamp}-{idx}" for idx, record in enumerate(records)]


def split_payload(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Separate stored text from the remaining payload metadata."""
    metadata = dict(payload)
    text = str(metadata.pop("text", "") or "")
    return text, metadata
