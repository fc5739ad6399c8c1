from __future__ import annotations

import math
from types import SimpleNamespace

import pytest

from src.rag.types import VectorRecord
from src.vectorstore.base import VectorStoreError
from src.vectorstore.milvus import MilvusConfig, MilvusVectorStore

pymilvus = pytest.importorskip("pymilvus")

pytestmark = pytest.mark.anyio


def _cosine(left: list[float], right: list[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


class FakeCollection:
    def __init__(self, schema) -> None:
        self.schema = schema
        self.rows: dict[str, dict] = {}
        self.indexes: list[dict] = []

    @property
    def num_entities(self) -> int:
        return len(self.rows)

    def create_index(self, field_name: str, index_params: dict) -> None:
        self.indexes.append({"field": field_name, **index_params})

    def upsert(self, rows: list[dict]) -> None:
        for row in rows:
            self.rows[row["id"]] = row

    def flush(self) -> None:
        pass

    def load(self) -> None:
        pass

    def search(self, data, anns_field, param, limit, output_fields):
        hits = [
            SimpleNamespace(
                score=_cosine(data[0], row[anns_field]),
                entity={name: row[name] for name in output_fields},
            )
            for row in self.rows.values()
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return [hits[:limit]]


class FakeMilvusServer:
    """In-process stand-in for the server side of the pymilvus calls."""

    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.dropped: list[str] = []
        self.connections = SimpleNamespace(connect=lambda **kwargs: None)
        self.utility = SimpleNamespace(
            has_collection=lambda name: name in self.collections,
            drop_collection=self._drop,
        )

    def _drop(self, name: str) -> None:
        self.dropped.append(name)
        self.collections.pop(name, None)

    def collection(self, name: str, schema=None, consistency_level: str | None = None):
        if schema is not None:
            self.collections[name] = FakeCollection(schema)
        return self.collections[name]


@pytest.fixture
def server(monkeypatch: pytest.MonkeyPatch) -> FakeMilvusServer:
    fake = FakeMilvusServer()
    monkeypatch.setattr(pymilvus, "connections", fake.connections)
    monkeypatch.setattr(pymilvus, "utility", fake.utility)
    monkeypatch.setattr(pymilvus, "Collection", fake.collection)
    return fake


def make_store(dimension: int = 2) -> MilvusVectorStore:
    return MilvusVectorStore(
        MilvusConfig(uri="http://milvus:19530", token=None, dimension=dimension)
    )


async def test_ensure_collection_creates_schema_and_index(server: FakeMilvusServer) -> None:
    store = make_store(dimension=3)

    await store.ensure_collection()
    await store.ensure_collection()

    collection = server.collections["news_articles"]
    assert store._existing_embedding_dim() == 3
    assert len(collection.indexes) == 1
    assert collection.indexes[0]["metric_type"] == "COSINE"


async def test_existing_collection_with_other_dimension_is_rejected(
    server: FakeMilvusServer,
) -> None:
    await make_store(dimension=8).ensure_collection()

    with pytest.raises(VectorStoreError, match="dimension mismatch"):
        await make_store(dimension=3).ensure_collection()


async def test_search_filters_by_threshold_and_restores_metadata(
    server: FakeMilvusServer,
) -> None:
    store = make_store()
    await store.upsert(
        [
            VectorRecord(vector=[1.0, 0.0], payload={"text": "rates held", "title": "Rates"}),
            VectorRecord(vector=[0.6, 0.8], payload={"text": "harbour", "title": "Harbour"}),
            VectorRecord(vector=[0.0, 1.0], payload={"text": "storm", "title": "Storm"}),
        ]
    )

    results = await store.search([1.0, 0.0], limit=3, score_threshold=0.5)

    assert [result.text for result in results] == ["rates held", "harbour"]
    assert results[0].metadata == {"title": "Rates"}
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.6)


async def test_clear_drops_and_recreates_collection(server: FakeMilvusServer) -> None:
    store = make_store()
    await store.upsert([VectorRecord(vector=[1.0, 0.0], payload={"text": "old"})])
    assert (await store.stats())["document_count"] == 1

    await store.clear()

    assert server.dropped == ["news_articles"]
    assert (await store.stats())["document_count"] == 0
    assert await store.search([1.0, 0.0], limit=5) == []
    assert (await store.health())["ok"] is True
