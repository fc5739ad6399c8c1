from __future__ import annotations

import re

import pytest

from src.rag.errors import DimensionMismatchError
from src.rag.types import VectorRecord
from src.vectorstore.inmemory import InMemoryVectorStore

pytestmark = pytest.mark.anyio


async def test_ensure_collection_is_idempotent() -> None:
    store = InMemoryVectorStore(dimension=2)
    await store.ensure_collection()
    await store.upsert([VectorRecord(vector=[1.0, 0.0], payload={"text": "kept"})])

    await store.ensure_collection()

    assert (await store.stats())["document_count"] == 1


async def test_upsert_rejects_wrong_dimension_before_storing() -> None:
    store = InMemoryVectorStore(dimension=3)
    records = [
        VectorRecord(vector=[1.0, 0.0, 0.0], payload={"text": "ok"}),
        VectorRecord(vector=[1.0, 0.0], payload={"text": "short"}),
    ]

    with pytest.raises(DimensionMismatchError) as excinfo:
        await store.upsert(records)

    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert store.points == {}


async def test_generated_ids_are_unique_per_call() -> None:
    store = InMemoryVectorStore(dimension=2)

    ids = await store.upsert(
        [
            VectorRecord(vector=[1.0, 0.0], payload={"text": "a"}),
            VectorRecord(vector=[0.0, 1.0], payload={"text": "b"}),
        ]
    )

    assert len(set(ids)) == 2
    assert all(re.fullmatch(r"\d+-\d+", record_id) for record_id in ids)


async def test_search_orders_filters_and_omits_vectors() -> None:
    store = InMemoryVectorStore(dimension=2)
    await store.upsert(
        [
            VectorRecord(vector=[1.0, 0.0], payload={"text": "exact", "doc_id": "a"}),
            VectorRecord(vector=[0.6, 0.8], payload={"text": "close", "doc_id": "b"}),
            VectorRecord(vector=[0.0, 1.0], payload={"text": "orthogonal", "doc_id": "c"}),
        ]
    )

    results = await store.search([1.0, 0.0], limit=5, score_threshold=0.5)

    assert [result.text for result in results] == ["exact", "close"]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.6)
    assert results[0].metadata == {"doc_id": "a"}
    assert not hasattr(results[0], "vector")


async def test_clear_drops_all_records() -> None:
    store = InMemoryVectorStore(dimension=2)
    await store.upsert([VectorRecord(vector=[1.0, 0.0], payload={"text": "gone"})])

    await store.clear()

    assert await store.search([1.0, 0.0], limit=3) == []
    assert (await store.health())["ok"] is True


async def test_exact_vector_is_top_hit() -> None:
    store = InMemoryVectorStore(dimension=3)
    await store.upsert(
        [
            VectorRecord(vector=[0.2, 0.9, 0.1], payload={"text": "target"}),
            VectorRecord(vector=[0.9, 0.1, 0.0], payload={"text": "other"}),
            VectorRecord(vector=[0.0, 0.2, 0.9], payload={"text": "third"}),
        ]
    )

    results = await store.search([0.2, 0.9, 0.1], limit=1)

    assert [result.text for result in results] == ["target"]
    assert results[0].score == pytest.approx(1.0)
