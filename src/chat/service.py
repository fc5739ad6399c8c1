from __future__ import annotations

"""Per-session chat turns: cache check, retrieval, generation and persistence."""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

import anyio

from src.cache.session import SessionCache
from src.chat.history import HistorySink, NullHistorySink
from src.chat.models import ChatMessage, ChatTurn, StreamEvent
from src.rag.errors import ChatError, NewsRAGError, NotFoundError
from src.rag.pipeline import AnswerEngine
from src.rag.types import RetrievedDocument

logger = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class ChatConfig:
    top_k: int | None = None
    score_threshold: float | None = None
    error_message: str = "Failed to process your message"
    stream_error_message: str = "Failed to generate response"


def source_entry(document: RetrievedDocument) -> dict[str, Any]:
    """Describe a retrieved chunk the way clients display a citation."""
    metadata = document.metadata
    return {
        "title": metadata.get("doc_title") or metadata.get("title"),
        "source": metadata.get("source", "unknown"),
        "url": metadata.get("link"),
        "published": metadata.get("pub_date"),
        "score": document.score,
    }


@dataclass
class ChatService:
    """Chat sessions over the session cache and the answer engine.

    Every completed turn appends exactly one user and one assistant message,
    whether the answer came from the query cache or from generation. Only
    generated answers are written back to the query cache.
    """
    cache: SessionCache
    engine: AnswerEngine
    config: ChatConfig = field(default_factory=ChatConfig)
    history_sink: HistorySink = field(default_factory=NullHistorySink)
    _pending: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)

    async def create_session(self) -> str:
        return await self.cache.create_session()

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        history = await self.cache.get_history(session_id)
        if history is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return history

    async def clear_session(self, session_id: str) -> None:
        await self.cache.clear(session_id)

    async def send_message(self, session_id: str, text: str) -> ChatTurn:
        """Answer one message; failures surface only as a generic ChatError."""
        try:
            return await self._send(session_id, text)
        except NewsRAGError as exc:
            logger.error(
                "chat_message_failed",
                extra={"session_id": session_id, "detail": type(exc).__name__},
            )
            raise ChatError(self.config.error_message) from exc

    async def _send(self, session_id: str, text: str) -> ChatTurn:
        user_message = ChatMessage(role="user", content=text)
        history = await self._prior_history(session_id)

        cached_result = await self.cache.get_cached_result(text)
        if cached_result is not None:
            logger.info("chat_cache_hit", extra={"session_id": session_id})
            reply = ChatMessage(
                role="assistant",
                content=str(cached_result.get("response", "")),
                sources=list(cached_result.get("sources") or []),
            )
            await self._persist(session_id, user_message, reply)
            return ChatTurn(message=reply, cached=True)

        answer = await self.engine.answer(
            text, history, self.config.top_k, self.config.score_threshold
        )
        sources = [source_entry(document) for document in answer.sources]
        reply = ChatMessage(role="assistant", content=answer.content, sources=sources)
        await self._persist(session_id, user_message, reply)
        await self.cache.cache_result(text, {"response": answer.content, "sources": sources})
        return ChatTurn(message=reply, cached=False)

    async def stream_message(
        self,
        session_id: str,
        text: str,
        is_disconnected: DisconnectProbe | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield start, sources, chunk... and end events for one message.

        Failures end the stream with an ``error`` event. If the client goes
        away, the text produced so far is stored as a partial assistant
        message and the query cache is left untouched.
        """
        user_message = ChatMessage(role="user", content=text)
        produced: list[str] = []
        sources: list[dict[str, Any]] = []
        finished = False
        try:
            yield StreamEvent("start", {"session_id": session_id})
            history = await self._prior_history(session_id)

            cached_result = await self.cache.get_cached_result(text)
            if cached_result is not None:
                logger.info("chat_cache_hit", extra={"session_id": session_id, "stream": True})
                sources = list(cached_result.get("sources") or [])
                yield StreamEvent("sources", {"sources": sources})
                content = str(cached_result.get("response", ""))
                produced.append(content)
                yield StreamEvent("chunk", {"content": content})
                finished = True
                await self._persist(
                    session_id,
                    user_message,
                    ChatMessage(role="assistant", content=content, sources=sources),
                )
                yield StreamEvent("end", {"cached": True, "partial": False})
                return

            streaming = await self.engine.answer_streaming(
                text, history, self.config.top_k, self.config.score_threshold
            )
            sources = [source_entry(document) for document in streaming.sources]
            yield StreamEvent("sources", {"sources": sources})

            disconnected = False
            async with aclosing(streaming.fragments) as fragments:
                async for fragment in fragments:
                    if is_disconnected is not None and await is_disconnected():
                        disconnected = True
                        break
                    produced.append(fragment)
                    yield StreamEvent("chunk", {"content": fragment})

            finished = True
            content = "".join(produced)
            reply = ChatMessage(
                role="assistant", content=content, sources=sources, partial=disconnected
            )
            await self._persist(session_id, user_message, reply)
            if disconnected:
                logger.info(
                    "chat_stream_disconnected",
                    extra={"session_id": session_id, "chars": len(content)},
                )
                return
            await self.cache.cache_result(text, {"response": content, "sources": sources})
            yield StreamEvent("end", {"cached": False, "partial": False})
        except (GeneratorExit, asyncio.CancelledError):
            if not finished:
                finished = True
                logger.info(
                    "chat_stream_disconnected",
                    extra={"session_id": session_id, "chars": sum(map(len, produced))},
                )
                reply = ChatMessage(
                    role="assistant", content="".join(produced), sources=sources, partial=True
                )
                with anyio.CancelScope(shield=True):
                    await self._persist(session_id, user_message, reply)
            raise
        except Exception as exc:
            logger.error(
                "chat_stream_failed",
                extra={"session_id": session_id, "detail": type(exc).__name__},
            )
            yield StreamEvent("error", {"message": self.config.stream_error_message})

    async def flush(self) -> None:
        """Wait for background history writes to finish."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending)

    async def _prior_history(self, session_id: str) -> list[ChatMessage]:
        history = await self.cache.get_history(session_id)
        if history is None:
            logger.info("chat_session_unknown", extra={"session_id": session_id})
            return []
        return history

    async def _persist(self, session_id: str, *messages: ChatMessage) -> None:
        await self.cache.append_and_store(session_id, *messages)
        self._record_later(session_id, messages)

    def _record_later(self, session_id: str, messages: Sequence[ChatMessage]) -> None:
        if isinstance(self.history_sink, NullHistorySink):
            return
        task = asyncio.create_task(self._record(session_id, list(messages)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record(self, session_id: str, messages: list[ChatMessage]) -> None:
        try:
            await self.history_sink.record(session_id, messages)
        except Exception as exc:
            logger.warning(
                "chat_history_sink_failed",
                extra={"session_id": session_id, "detail": type(exc).__name__},
            )
