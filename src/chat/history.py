from __future__ import annotations

"""Secondary sinks receiving completed chat turns."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from src.chat.models import ChatMessage
from src.rag.errors import NewsRAGError


class HistorySinkError(NewsRAGError):
    """Raised when chat history persistence fails."""
    pass


class HistorySink(Protocol):
    """Protocol for durable chat history writers."""

    async def record(self, session_id: str, messages: Sequence[ChatMessage]) -> None:
        ...


class NullHistorySink:
    """Sink that discards every turn."""

    async def record(self, session_id: str, messages: Sequence[ChatMessage]) -> None:
        return None


class SQLHistorySink:
    """Append chat messages to a SQL table."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the sink and ensure the table exists."""
        try:
            from sqlalchemy import (
                Boolean,
                Column,
                DateTime,
                Integer,
                MetaData,
                String,
                Table,
                Text,
                create_engine,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise HistorySinkError("sqlalchemy is required to use the SQL history sink") from exc

        self._engine = create_engine(connection_uri)
        self._metadata = MetaData()
        self._table = Table(
            "chat_messages",
            self._metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("session_id", String(64), nullable=False, index=True),
            Column("role", String(16), nullable=False),
            Column("content", Text, nullable=False),
            Column("sources", Text, nullable=True),
            Column("partial", Boolean, nullable=False, default=False),
            Column("sent_at", String(64), nullable=False),
            Column("recorded_at", DateTime(timezone=True), nullable=False),
        )
        self._metadata.create_all(self._engine)

    async def record(self, session_id: str, messages: Sequence[ChatMessage]) -> None:
        """Insert the messages in a worker thread."""
        rows = [self._serialize(session_id, message) for message in messages]
        if rows:
            await asyncio.to_thread(self._insert, rows)

    def messages(self, session_id: str) -> list[ChatMessage]:
        """Return stored messages for a session in insertion order."""
        from sqlalchemy import select

        query = (
            select(self._table)
            .where(self._table.c.session_id == session_id)
            .order_by(self._table.c.id)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [
            ChatMessage(
                role=row["role"],
                content=row["content"],
                timestamp=row["sent_at"],
                sources=json.loads(row["sources"]) if row["sources"] else None,
                partial=bool(row["partial"]),
            )
            for row in rows
        ]

    def _insert(self, rows: list[dict[str, Any]]) -> None:
        with self._engine.begin() as conn:
            conn.execute(self._table.insert(), rows)

    def _serialize(self, session_id: str, message: ChatMessage) -> dict[str, Any]:
        sources = None
        if message.sources is not None:
            sources = json.dumps(message.sources, ensure_ascii=True, default=str)
        return {
            "session_id": session_id,
            "role": message.role,
            "content": message.content,
            "sources": sources,
            "partial": message.partial,
            "sent_at": message.timestamp,
            "recorded_at": datetime.now(timezone.utc),
        }
