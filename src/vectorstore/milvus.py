from __future__ import annotations

"""Milvus-backed vector index for news article chunks."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from src.rag.errors import NewsRAGError
from src.rag.types import RetrievedDocument, VectorRecord
from src.vectorstore.base import (
    VectorStoreError,
    assign_ids,
    check_dimensions,
    split_payload,
)

logger = logging.getLogger(__name__)


class MilvusDependencyError(NewsRAGError):
    """Raised when Milvus dependencies are missing."""
    pass


@dataclass
class MilvusConfig:
    """Configuration for Milvus connection and indexing."""
    uri: str
    token: str | None
    dimension: int
    collection: str = "news_articles"
    consistency: str = "Strong"
    index_type: str = "IVF_FLAT"
    metric_type: str = "COSINE"
    nlist: int = 1024
    nprobe: int = 10
    max_text_length: int = 65535


@dataclass
class MilvusVectorStore:
    """Milvus vector index storing text and JSON metadata next to each vector."""
    config: MilvusConfig
    collection: Any = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """Connect to Milvus."""
        try:
            from pymilvus import connections
        except ImportError as exc:
            raise MilvusDependencyError("pymilvus is required for MilvusVectorStore") from exc
        if self.config.dimension <= 0:
            raise MilvusDependencyError(
                "Embedding dimension must be set before initializing MilvusVectorStore"
            )
        connections.connect(alias="default", uri=self.config.uri, token=self.config.token)

    @property
    def dimension(self) -> int:
        return self.config.dimension

    async def ensure_collection(self) -> None:
        """Create the collection and its index when missing."""
        await self._run(self._ensure_collection_sync)

    def _ensure_collection_sync(self) -> None:
        from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, utility

        if utility.has_collection(self.config.collection):
            self.collection = Collection(
                self.config.collection, consistency_level=self.config.consistency
            )
            existing_dim = self._existing_embedding_dim()
            if existing_dim is not None and existing_dim != self.dimension:
                raise VectorStoreError(
                    "Milvus collection embedding dimension mismatch: "
                    f"{existing_dim} (collection) vs {self.dimension} (configured). "
                    "Update EMBEDDING_DIMENSION or use a new MILVUS_COLLECTION."
                )
            return

        fields = [
            FieldSchema(name="id", dtype=DataType.VARCHAR, is_primary=True, max_length=64),
            FieldSchema(
                name="text",
                dtype=DataType.VARCHAR,
                max_length=self.config.max_text_length,
            ),
            FieldSchema(name="metadata", dtype=DataType.JSON),
            FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=self.dimension),
        ]
        schema = CollectionSchema(fields=fields, description="News article chunks")
        self.collection = Collection(
            self.config.collection,
            schema,
            consistency_level=self.config.consistency,
        )
        self.collection.create_index(
            field_name="embedding",
            index_params={
                "index_type": self.config.index_type,
                "metric_type": self.config.metric_type,
                "params": {"nlist": self.config.nlist},
            },
        )
        logger.info("milvus_collection_created", extra={"collection": self.config.collection})

    def _existing_embedding_dim(self) -> int | None:
        """Read embedding dimension from existing collection schema."""
        for schema_field in self.collection.schema.fields:
            if schema_field.name != "embedding":
                continue
            params = getattr(schema_field, "params", None) or {}
            dim = params.get("dim") if isinstance(params, dict) else None
            try:
                return int(dim) if dim is not None else None
            except (TypeError, ValueError):
                return None
        return None

    async def upsert(self, records: Sequence[VectorRecord]) -> list[str]:
        """Validate dimensions and upsert records into the collection."""
        check_dimensions([record.vector for record in records], self.dimension)
        ids = assign_ids(records)
        if not records:
            return ids
        rows: list[dict[str, Any]] = []
        for record_id, record in zip(ids, records):
            text, metadata = split_payload(record.payload)
            rows.append(
                {
                    "id": record_id,
                    "text": text[: self.config.max_text_length],
                    "metadata": metadata,
                    "embedding": [float(value) for value in record.vector],
                }
            )

        def _write() -> None:
            self.collection.upsert(rows)
            self.collection.flush()

        await self._run(_write, needs_collection=True)
        return ids

    async def search(
        self,
        query_vector: list[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[RetrievedDocument]:
        """Search the dense index and drop hits below the threshold."""
        check_dimensions([query_vector], self.dimension)
        if limit <= 0:
            return []
        params = {"metric_type": self.config.metric_type, "params": {"nprobe": self.config.nprobe}}

        def _search() -> Any:
            self.collection.load()
            return self.collection.search(
                data=[query_vector],
                anns_field="embedding",
                param=params,
                limit=limit,
                output_fields=["text", "metadata"],
            )

        results = await self._run(_search, needs_collection=True)
        documents: list[RetrievedDocument] = []
        for hit in results[0]:
            score = float(hit.score)
            if score_threshold is not None and score < score_threshold:
                continue
            payload = {"text": hit.entity.get("text")}
            payload.update(self._deserialize_metadata(hit.entity.get("metadata")))
            text, metadata = split_payload(payload)
            documents.append(RetrievedDocument(text=text, metadata=metadata, score=score))
        documents.sort(key=lambda item: item.score, reverse=True)
        return documents

    async def clear(self) -> None:
        """Drop and recreate the collection."""

        def _drop() -> None:
            from pymilvus import utility

            if utility.has_collection(self.config.collection):
                utility.drop_collection(self.config.collection)
            self.collection = None

        await self._run(_drop)
        await self.ensure_collection()
        logger.info("milvus_collection_cleared", extra={"collection": self.config.collection})

    def _deserialize_metadata(self, value: Any) -> dict[str, Any]:
        """Deserialize metadata from storage."""
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return {"raw": value}
        return {"raw": value}

    async def _run(self, func, needs_collection: bool = False) -> Any:
        """Run a blocking pymilvus call in a worker thread."""
        if needs_collection and self.collection is None:
            await self.ensure_collection()
        try:
            return await asyncio.to_thread(func)
        except VectorStoreError:
            raise
        except Exception as exc:
            raise VectorStoreError(f"Milvus operation failed: {exc}") from exc

    async def stats(self) -> dict[str, Any]:
        """Return collection stats."""
        try:
            count = int((await self._run(lambda: self.collection.num_entities, True)))
        except VectorStoreError:
            count = 0
        return {
            "backend": "milvus",
            "document_count": count,
            "embedding_dimension": self.dimension,
            "collection": self.config.collection,
        }

    async def health(self) -> dict[str, Any]:
        """Return collection health info."""
        try:
            await self._run(lambda: self.collection.num_entities, True)
        except VectorStoreError as exc:
            return {"backend": "milvus", "ok": False, "detail": str(exc)}
        return {"backend": "milvus", "ok": True, "collection": self.config.collection}
