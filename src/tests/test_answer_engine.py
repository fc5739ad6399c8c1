from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator

import pytest

from src.rag.answerer import DEFAULT_REFUSAL, ExtractiveGenerator
from src.rag.embeddings import EmbeddingGateway, HashEmbedder
from src.rag.errors import AnswerError
from src.rag.llm import GenerationRequest, LLMError
from src.rag.pipeline import AnswerEngine, RetrievalConfig, build_context_block
from src.rag.types import RetrievedDocument, VectorRecord
from src.vectorstore.inmemory import InMemoryVectorStore

pytestmark = pytest.mark.anyio

EMBEDDER = HashEmbedder(dimension=64)


@dataclass
class RecordingGenerator:
    reply: str = "Rates stay at 4 percent."
    requests: list[GenerationRequest] = field(default_factory=list)

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        return self.reply

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        for word in self.reply.split(" "):
            yield word + " "


class FailingGenerator:
    async def generate(self, request: GenerationRequest) -> str:
        raise LLMError("upstream timeout")

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        yield "partial "
        raise LLMError("upstream timeout")


async def build_engine(generator, **config) -> AnswerEngine:
    store = InMemoryVectorStore(dimension=EMBEDDER.dimension)
    texts = {
        "rates": "The central bank held interest rates at 4 percent on Thursday.",
        "storm": "A storm closed the harbour for two days before it reopened.",
    }
    await store.upsert(
        [
            VectorRecord(
                vector=EMBEDDER.embed_text(text),
                payload={
                    "text": text,
                    "doc_id": doc_id,
                    "doc_title": doc_id.title(),
                    "source": "Wire",
                },
            )
            for doc_id, text in texts.items()
        ]
    )
    return AnswerEngine(
        gateway=EmbeddingGateway(provider=EMBEDDER),
        index=store,
        generator=generator,
        config=RetrievalConfig(top_k=2, **config),
    )


async def test_answer_returns_extract_and_sources() -> None:
    engine = await build_engine(ExtractiveGenerator())

    answer = await engine.answer("What did the central bank do with interest rates?")

    assert "interest rates at 4 percent" in answer.content
    assert answer.sources[0].metadata["doc_id"] == "rates"
    assert answer.sources[0].score >= answer.sources[-1].score


async def test_streamed_fragments_concatenate_to_answer() -> None:
    engine = await build_engine(ExtractiveGenerator())
    query = "What happened at the harbour after the storm?"

    whole = await engine.answer(query)
    streaming = await engine.answer_streaming(query)
    assert [source.text for source in streaming.sources] == [
        source.text for source in whole.sources
    ]
    fragments = [fragment async for fragment in streaming.fragments]

    assert len(fragments) > 1
    assert "".join(fragments) == whole.content


async def test_threshold_without_matches_refuses() -> None:
    engine = await build_engine(ExtractiveGenerator(), score_threshold=0.99)

    answer = await engine.answer("Who won the football final?")

    assert answer.sources == []
    assert answer.content == DEFAULT_REFUSAL


async def test_history_is_trimmed_and_passed_to_generator() -> None:
    generator = RecordingGenerator()
    engine = await build_engine(generator, history_turns=2)
    history = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "second"},
        {"role": "user", "content": "third"},
    ]

    await engine.answer("And the rates?", history)

    request = generator.requests[0]
    assert request.history == [
        {"role": "assistant", "content": "second"},
        {"role": "user", "content": "third"},
    ]
    assert "QUESTION:\nAnd the rates?" in request.prompt
    assert "Source: Rates (Wire)" in request.prompt


async def test_generator_failure_is_wrapped() -> None:
    engine = await build_engine(FailingGenerator())

    with pytest.raises(AnswerError):
        await engine.answer("rates")


async def test_stream_failure_is_wrapped_after_fragments() -> None:
    engine = await build_engine(FailingGenerator())
    streaming = await engine.answer_streaming("rates")

    received: list[str] = []
    with pytest.raises(AnswerError):
        async for fragment in streaming.fragments:
            received.append(fragment)

    assert received == ["partial "]


def test_context_block_respects_budget() -> None:
    documents = [
        RetrievedDocument(text="a" * 100, metadata={"doc_title": "A", "source": "S"}, score=0.9),
        RetrievedDocument(text="b" * 100, metadata={"doc_title": "B", "source": "S"}, score=0.8),
    ]

    block = build_context_block(documents, max_chars=140)

    assert block.startswith("Source: A (S)\nContent: a")
    assert "Source: B" not in block
