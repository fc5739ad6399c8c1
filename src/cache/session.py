from __future__ import annotations

"""Session histories and query results kept in an expiring store."""

import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from src.cache.store import CacheStore
from src.chat.models import ChatMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheConfig:
    key_prefix: str = "news_rag:"
    session_ttl: int = 3600
    query_ttl: int = 3600


def query_key_suffix(query: str) -> str:
    """Encode the literal query text for use in a cache key."""
    return base64.b64encode(query.encode("utf-8")).decode("ascii")


@dataclass
class SessionCache:
    """Best-effort cache: store failures are logged and never raised.

    Histories are stored as JSON arrays of messages under
    ``<prefix>session:<id>``; query results as ``{response, sources}`` under
    ``<prefix>query:<base64(query)>``.
    """
    store: CacheStore
    config: CacheConfig = field(default_factory=CacheConfig)

    def session_key(self, session_id: str) -> str:
        return f"{self.config.key_prefix}session:{session_id}"

    def query_key(self, query: str) -> str:
        return f"{self.config.key_prefix}query:{query_key_suffix(query)}"

    async def create_session(self) -> str:
        session_id = str(uuid.uuid4())
        await self.store_history(session_id, [])
        logger.info("session_created", extra={"session_id": session_id})
        return session_id

    async def get_history(self, session_id: str) -> list[ChatMessage] | None:
        raw = await self._get(self.session_key(session_id))
        return self._decode_history(session_id, raw)

    def _decode_history(self, session_id: str, raw: str | None) -> list[ChatMessage] | None:
        if raw is None:
            return None
        try:
            items = json.loads(raw)
            return [ChatMessage.from_dict(item) for item in items]
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning(
                "session_history_corrupt",
                extra={"session_id": session_id, "detail": type(exc).__name__},
            )
            return None

    async def store_history(self, session_id: str, messages: Sequence[ChatMessage]) -> None:
        payload = json.dumps([message.to_dict() for message in messages])
        await self._set(self.session_key(session_id), payload, self.config.session_ttl)

    async def append_and_store(self, session_id: str, *messages: ChatMessage) -> list[ChatMessage]:
        """Append to the stored history and write it back, refreshing its TTL.

        When the stored history cannot be read the write is skipped, so an
        unreachable store never replaces a history with just the new messages.
        """
        try:
            raw = await self.store.get(self.session_key(session_id))
        except Exception as exc:
            logger.warning(
                "session_append_skipped",
                extra={"session_id": session_id, "detail": type(exc).__name__},
            )
            return list(messages)
        history = self._decode_history(session_id, raw) or []
        history.extend(messages)
        await self.store_history(session_id, history)
        return history

    async def clear(self, session_id: str) -> None:
        await self.store_history(session_id, [])
        logger.info("session_cleared", extra={"session_id": session_id})

    async def cache_result(self, query: str, result: dict[str, Any]) -> None:
        try:
            payload = json.dumps(result)
        except (TypeError, ValueError) as exc:
            logger.warning("query_cache_unserializable", extra={"detail": type(exc).__name__})
            return
        await self._set(self.query_key(query), payload, self.config.query_ttl)

    async def get_cached_result(self, query: str) -> dict[str, Any] | None:
        raw = await self._get(self.query_key(query))
        if raw is None:
            return None
        try:
            result = json.loads(raw)
        except ValueError:
            return None
        return result if isinstance(result, dict) else None

    async def _get(self, key: str) -> str | None:
        try:
            return await self.store.get(key)
        except Exception as exc:
            logger.warning("cache_get_failed", extra={"key": key, "detail": type(exc).__name__})
            return None

    async def _set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.store.set(key, value, ttl)
        except Exception as exc:
            logger.warning("cache_set_failed", extra={"key": key, "detail": type(exc).__name__})
