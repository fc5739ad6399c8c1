from __future__ import annotations

from functools import lru_cache

from src.app.settings import settings
from src.cache.session import CacheConfig, SessionCache
from src.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore
from src.chat.history import HistorySink, NullHistorySink, SQLHistorySink
from src.chat.service import ChatConfig, ChatService
from src.loaders.chunking import Chunker, ChunkerConfig
from src.loaders.rss import FeedConfig
from src.rag.embeddings import (
    EmbeddingConfig,
    EmbeddingConfigError,
    EmbeddingConfigReport,
    EmbeddingGateway,
    EmbeddingProvider,
    GeminiEmbedder,
    HashEmbedder,
    JinaEmbedder,
    OpenAIEmbedder,
    build_embedding_config_report,
)
from src.rag.ingestion import IngestionPipeline
from src.rag.llm import ChatGenerator, build_llm_generator
from src.rag.pipeline import AnswerEngine, RetrievalConfig
from src.vectorstore.base import VectorIndex
from src.vectorstore.inmemory import InMemoryVectorStore
from src.vectorstore.milvus import MilvusConfig, MilvusVectorStore


@lru_cache
def get_gateway() -> EmbeddingGateway:
    return EmbeddingGateway(
        provider=build_embedder(),
        config=EmbeddingConfig(
            max_tokens=settings.embedding_max_tokens,
            batch_size=settings.embedding_batch_size,
            batch_delay=settings.embedding_batch_delay,
        ),
    )


@lru_cache
def get_vector_index() -> VectorIndex:
    return build_vectorstore(get_gateway().dimension)


@lru_cache
def get_answer_engine() -> AnswerEngine:
    return AnswerEngine(
        gateway=get_gateway(),
        index=get_vector_index(),
        generator=build_generator(),
        config=RetrievalConfig(
            top_k=settings.top_k,
            score_threshold=settings.min_score,
            history_turns=settings.chat_history_turns,
            context_max_chars=settings.llm_context_max_chars,
        ),
    )


@lru_cache
def get_ingestion_pipeline() -> IngestionPipeline:
    chunker = Chunker(
        ChunkerConfig(
            max_chunk_size=settings.chunk_size,
            overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
        )
    )
    return IngestionPipeline(chunker=chunker, gateway=get_gateway(), index=get_vector_index())


@lru_cache
def get_session_cache() -> SessionCache:
    return SessionCache(
        store=build_cache_store(),
        config=CacheConfig(
            key_prefix=settings.redis_prefix,
            session_ttl=settings.session_ttl,
            query_ttl=settings.query_cache_ttl,
        ),
    )


@lru_cache
def get_chat_service() -> ChatService:
    return ChatService(
        cache=get_session_cache(),
        engine=get_answer_engine(),
        config=ChatConfig(top_k=settings.top_k, score_threshold=settings.min_score),
        history_sink=build_history_sink(),
    )


def reset_service_cache() -> None:
    for factory in (
        get_gateway,
        get_vector_index,
        get_answer_engine,
        get_ingestion_pipeline,
        get_session_cache,
        get_chat_service,
    ):
        factory.cache_clear()


def get_feed_config() -> FeedConfig:
    return FeedConfig(
        max_items_per_feed=settings.rss_max_items,
        fetch_full_content=settings.rss_fetch_full_content,
    )


def _embedding_model() -> str | None:
    provider = settings.embedding_provider.lower().strip()
    if provider == "jina":
        return settings.jina_embedding_model
    if provider == "openai":
        return settings.openai_embedding_model
    if provider in {"gemini", "google"}:
        return settings.gemini_embedding_model
    return None


def get_embedding_config_report() -> EmbeddingConfigReport:
    return build_embedding_config_report(
        settings.embedding_provider, _embedding_model(), settings.embedding_dimension
    )


def build_embedder() -> EmbeddingProvider:
    provider = settings.embedding_provider.lower().strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider == "jina":
        return JinaEmbedder(
            api_key=settings.jina_api_key or "",
            model=settings.jina_embedding_model,
            dimension=settings.embedding_dimension,
            api_url=settings.jina_api_url,
        )
    if provider == "openai":
        return OpenAIEmbedder(
            api_key=settings.openai_api_key or "",
            model=settings.openai_embedding_model or "",
            dimension=settings.embedding_dimension,
        )
    if provider in {"gemini", "google"}:
        return GeminiEmbedder(
            api_key=settings.gemini_api_key or "",
            model=settings.gemini_embedding_model or "",
            dimension=settings.embedding_dimension,
        )
    raise EmbeddingConfigError(f"Unsupported embedding provider: {provider}")


def build_vectorstore(dimension: int) -> InMemoryVectorStore | MilvusVectorStore:
    backend = settings.vectorstore_backend.lower().strip()
    if backend == "milvus":
        config = MilvusConfig(
            uri=settings.milvus_uri,
            token=settings.milvus_token,
            dimension=dimension,
            collection=settings.milvus_collection,
            consistency=settings.milvus_consistency,
            index_type=settings.milvus_index_type,
            metric_type=settings.milvus_metric_type,
            nlist=settings.milvus_nlist,
            nprobe=settings.milvus_nprobe,
        )
        return MilvusVectorStore(config=config)
    return InMemoryVectorStore(dimension=dimension, collection=settings.milvus_collection)


def build_generator() -> ChatGenerator:
    return build_llm_generator(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        api_key_gemini=settings.gemini_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        gemini_model=settings.gemini_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )


def build_cache_store() -> CacheStore:
    if settings.cache_backend.lower().strip() == "redis":
        return RedisCacheStore(url=settings.redis_url)
    return InMemoryCacheStore()


def build_history_sink() -> HistorySink:
    if settings.history_db_uri:
        return SQLHistorySink(settings.history_db_uri)
    return NullHistorySink()
