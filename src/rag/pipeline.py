from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

from src.rag.embeddings import EmbeddingGateway
from src.rag.errors import AnswerError, NewsRAGError
from src.rag.llm import ChatGenerator, GenerationRequest, base_system_prompt
from src.rag.types import RetrievedDocument
from src.vectorstore.base import VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalConfig:
    top_k: int = 5
    score_threshold: float | None = None
    history_turns: int = 10
    context_max_chars: int = 12000


@dataclass
class Answer:
    content: str
    sources: list[RetrievedDocument]


@dataclass
class StreamingAnswer:
    """Sources known up front plus a single-use fragment iterator."""
    sources: list[RetrievedDocument]
    fragments: AsyncIterator[str]


def build_context_block(documents: Sequence[RetrievedDocument], max_chars: int) -> str:
    """Concatenate title, source and text of each document within a budget."""
    blocks: list[str] = []
    total = 0
    for document in documents:
        title = document.metadata.get("doc_title") or document.metadata.get("title", "Untitled")
        source = document.metadata.get("source", "unknown")
        header = f"Source: {title} ({source})\nContent: "
        block = header + document.text.strip()
        if total + len(block) > max_chars:
            remaining = max_chars - total
            if remaining <= len(header):
                break
            block = block[:remaining]
        blocks.append(block)
        total += len(block)
    return "\n\n".join(blocks)


def build_prompt(query: str, context: str) -> str:
    return (
        f"CONTEXT:\n{context or 'No relevant articles were found.'}\n\n"
        f"QUESTION:\n{query}\n\n"
        "Please provide a concise, accurate answer based solely on the context. "
        "Include sources where appropriate."
    )


def history_turns(history: Sequence[Any], max_turns: int) -> list[dict[str, str]]:
    """Return the most recent chat messages as role-tagged turns."""
    if not history:
        return []
    trimmed = list(history)[-max_turns:] if max_turns > 0 else list(history)
    turns: list[dict[str, str]] = []
    for message in trimmed:
        if isinstance(message, dict):
            turns.append(
                {"role": message.get("role", "user"), "content": message.get("content", "")}
            )
        else:
            turns.append({"role": message.role, "content": message.content})
    return turns


@dataclass
class AnswerEngine:
    gateway: EmbeddingGateway
    index: VectorIndex
    generator: ChatGenerator
    config: RetrievalConfig = field(default_factory=RetrievalConfig)
    system_prompt: str = field(default_factory=base_system_prompt)

    async def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> list[RetrievedDocument]:
        limit = top_k or self.config.top_k
        score_threshold = self.config.score_threshold if threshold is None else threshold
        query_vector = await self.gateway.embed_one(query)
        results = await self.index.search(query_vector, limit, score_threshold)
        logger.info(
            "retrieval_complete",
            extra={
                "results": len(results),
                "query_length": len(query),
                "top_score": results[0].score if results else None,
            },
        )
        return results

    def _request(
        self,
        query: str,
        history: Sequence[Any],
        documents: list[RetrievedDocument],
    ) -> GenerationRequest:
        context = build_context_block(documents, self.config.context_max_chars)
        return GenerationRequest(
            system_prompt=self.system_prompt,
            prompt=build_prompt(query, context),
            query=query,
            history=history_turns(history, self.config.history_turns),
            documents=documents,
        )

    async def answer(
        self,
        query: str,
        history: Sequence[Any] = (),
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> Answer:
        """Retrieve context and generate a whole answer."""
        try:
            documents = await self.retrieve(query, top_k, threshold)
            content = await self.generator.generate(self._request(query, history, documents))
        except NewsRAGError as exc:
            logger.error("answer_failed", extra={"detail": type(exc).__name__})
            raise AnswerError(f"Failed to answer query: {exc}") from exc
        return Answer(content=content, sources=documents)

    async def answer_streaming(
        self,
        query: str,
        history: Sequence[Any] = (),
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> StreamingAnswer:
        """Retrieve context, then expose the generator's fragments lazily."""
        try:
            documents = await self.retrieve(query, top_k, threshold)
        except NewsRAGError as exc:
            logger.error("answer_failed", extra={"detail": type(exc).__name__})
            raise AnswerError(f"Failed to answer query: {exc}") from exc
        request = self._request(query, history, documents)
        return StreamingAnswer(sources=documents, fragments=self._fragments(request))

    async def _fragments(self, request: GenerationRequest) -> AsyncIterator[str]:
        try:
            async for fragment in self.generator.stream(request):
                yield fragment
        except NewsRAGError as exc:
            logger.error("answer_stream_failed", extra={"detail": type(exc).__name__})
            raise AnswerError(f"Failed to stream answer: {exc}") from exc
