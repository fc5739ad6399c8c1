from __future__ import annotations

import base64
import json

import pytest

from src.cache.session import CacheConfig, SessionCache
from src.cache.store import InMemoryCacheStore, RedisCacheStore
from src.chat.models import ChatMessage
from src.rag.errors import CacheError

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenStore:
    async def get(self, key: str) -> str | None:
        raise CacheError("connection refused")

    async def set(self, key: str, value: str, ttl: int) -> None:
        raise CacheError("connection refused")

    async def delete(self, key: str) -> None:
        raise CacheError("connection refused")


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


async def test_new_session_starts_empty() -> None:
    cache = SessionCache(InMemoryCacheStore())

    session_id = await cache.create_session()

    assert await cache.get_history(session_id) == []
    assert await cache.get_history("missing") is None


async def test_append_and_store_keeps_order() -> None:
    cache = SessionCache(InMemoryCacheStore())
    session_id = await cache.create_session()

    await cache.append_and_store(session_id, ChatMessage(role="user", content="hi"))
    await cache.append_and_store(
        session_id,
        ChatMessage(role="assistant", content="hello", sources=[{"title": "A"}]),
    )

    history = await cache.get_history(session_id)
    assert [message.content for message in history] == ["hi", "hello"]
    assert history[1].sources == [{"title": "A"}]


async def test_session_expires_after_ttl_and_writes_refresh_it() -> None:
    clock = FakeClock()
    cache = SessionCache(InMemoryCacheStore(clock=clock), CacheConfig(session_ttl=60))
    session_id = await cache.create_session()

    clock.now += 50
    await cache.append_and_store(session_id, ChatMessage(role="user", content="still here"))
    clock.now += 50
    assert await cache.get_history(session_id) is not None

    clock.now += 61
    assert await cache.get_history(session_id) is None


async def test_clear_keeps_session_valid() -> None:
    cache = SessionCache(InMemoryCacheStore())
    session_id = await cache.create_session()
    await cache.append_and_store(session_id, ChatMessage(role="user", content="hi"))

    await cache.clear(session_id)

    assert await cache.get_history(session_id) == []


async def test_query_results_are_keyed_by_literal_query() -> None:
    store = InMemoryCacheStore()
    cache = SessionCache(store, CacheConfig(key_prefix="test:"))

    await cache.cache_result("Who won?", {"response": "The home team.", "sources": []})

    encoded = base64.b64encode("Who won?".encode("utf-8")).decode("ascii")
    assert json.loads(await store.get(f"test:query:{encoded}"))["response"] == "The home team."
    assert (await cache.get_cached_result("Who won?"))["response"] == "The home team."
    assert await cache.get_cached_result("who won?") is None


async def test_store_failures_are_swallowed() -> None:
    cache = SessionCache(BrokenStore())

    session_id = await cache.create_session()
    await cache.append_and_store(session_id, ChatMessage(role="user", content="hi"))
    await cache.cache_result("q", {"response": "a", "sources": []})

    assert session_id
    assert await cache.get_history(session_id) is None
    assert await cache.get_cached_result("q") is None


async def test_redis_store_uses_setex() -> None:
    client = FakeRedis()
    cache = SessionCache(RedisCacheStore(client=client), CacheConfig(session_ttl=120))

    session_id = await cache.create_session()

    key = f"news_rag:session:{session_id}"
    assert client.ttls[key] == 120
    assert await cache.get_history(session_id) == []


class FlakyReadStore(InMemoryCacheStore):
    """Store whose reads fail on demand while writes keep working."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False

    async def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise CacheError("read timeout")
        return await super().get(key)


async def test_append_skips_write_when_history_read_fails() -> None:
    store = FlakyReadStore()
    cache = SessionCache(store)
    session_id = await cache.create_session()
    await cache.append_and_store(session_id, ChatMessage(role="user", content="first"))

    store.fail_reads = True
    await cache.append_and_store(session_id, ChatMessage(role="user", content="second"))
    store.fail_reads = False

    history = await cache.get_history(session_id)
    assert [message.content for message in history] == ["first"]


async def test_expired_query_results_are_purged_on_write() -> None:
    clock = FakeClock()
    store = InMemoryCacheStore(clock=clock)
    cache = SessionCache(store, CacheConfig(query_ttl=10))

    for index in range(1000):
        await cache.cache_result(f"query {index}", {"response": "r", "sources": []})
    assert len(store) == 1000

    clock.now += 3600
    await cache.cache_result("fresh query", {"response": "r", "sources": []})

    assert len(store) == 1
    assert await cache.get_cached_result("fresh query") is not None
