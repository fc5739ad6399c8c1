from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import pytest

from src.rag.embeddings import (
    EmbeddingConfig,
    EmbeddingGateway,
    EmbeddingProviderError,
    HashEmbedder,
    JinaEmbedder,
    build_embedding_config_report,
)

pytestmark = pytest.mark.anyio


@dataclass
class FlakyProvider:
    """Fails any call that includes one of the ``failing`` texts."""
    dimension: int = 3
    failing: set[str] = field(default_factory=set)
    calls: list[list[str]] = field(default_factory=list)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if any(text in self.failing for text in texts):
            raise EmbeddingProviderError("provider rejected input")
        return [[float(len(text)), 1.0, 0.0] for text in texts]


def build_gateway(provider: FlakyProvider, **overrides) -> tuple[EmbeddingGateway, list[float]]:
    delays: list[float] = []

    async def record_sleep(delay: float) -> None:
        delays.append(delay)

    config = EmbeddingConfig(
        max_tokens=overrides.pop("max_tokens", 1000),
        chars_per_token=4,
        batch_size=overrides.pop("batch_size", 2),
        batch_delay=0.5,
        fallback_delay=0.1,
    )
    return EmbeddingGateway(provider=provider, config=config, sleep=record_sleep), delays


async def test_embed_one_truncates_to_token_budget() -> None:
    provider = FlakyProvider()
    gateway, _ = build_gateway(provider, max_tokens=5)

    vector = await gateway.embed_one("x" * 100)

    assert provider.calls == [["x" * 20]]
    assert vector[0] == 20.0


async def test_embed_batch_delays_only_between_successful_batches() -> None:
    provider = FlakyProvider()
    gateway, delays = build_gateway(provider)

    vectors = await gateway.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

    assert [vector[0] for vector in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert [len(call) for call in provider.calls] == [2, 2, 1]
    assert delays == [0.5, 0.5]


async def test_failed_group_falls_back_per_item_with_zero_vector() -> None:
    provider = FlakyProvider(failing={"bad"})
    gateway, delays = build_gateway(provider, batch_size=3)

    vectors = await gateway.embed_batch(["one", "bad", "three"])

    assert vectors == [[3.0, 1.0, 0.0], [0.0, 0.0, 0.0], [5.0, 1.0, 0.0]]
    assert provider.calls == [["one", "bad", "three"], ["one"], ["bad"], ["three"]]
    assert delays == [0.1, 0.1]


async def test_single_item_group_failure_propagates() -> None:
    provider = FlakyProvider(failing={"bad"})
    gateway, _ = build_gateway(provider, batch_size=2)

    with pytest.raises(EmbeddingProviderError):
        await gateway.embed_batch(["fine", "okay", "bad"])


async def test_hash_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashEmbedder(dimension=32)

    first, second = await embedder.embed(["Central bank holds rates", "Central bank holds rates"])

    assert first == second
    assert len(first) == 32
    assert abs(sum(value * value for value in first) - 1.0) < 1e-6


async def test_jina_embedder_orders_by_index() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        embedder = JinaEmbedder(api_key="secret", dimension=2, client=client)
        vectors = await embedder.embed(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]


async def test_jina_embedder_wraps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"detail": "slow down"}))

    async with httpx.AsyncClient(transport=transport) as client:
        embedder = JinaEmbedder(api_key="secret", dimension=2, client=client)
        with pytest.raises(EmbeddingProviderError):
            await embedder.embed(["text"])


def test_embedding_config_report_flags_dimension_mismatch() -> None:
    report = build_embedding_config_report("openai", "text-embedding-3-small", 768)

    assert report.ok is False
    assert report.expected_dimension == 1536
    assert report.action == "Set EMBEDDING_DIMENSION to 1536."


async def test_every_call_failing_yields_zero_vectors_of_full_length() -> None:
    provider = FlakyProvider(failing={"a", "b", "c"})
    gateway, _ = build_gateway(provider, batch_size=3)

    vectors = await gateway.embed_batch(["a", "b", "c"])

    assert vectors == [[0.0, 0.0, 0.0]] * 3
