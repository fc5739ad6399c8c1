from __future__ import annotations

import os
from dataclasses import dataclass

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in minimal setups
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    vectorstore_backend: str = os.getenv("RAG_VECTORSTORE", "memory")
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    embedding_max_tokens: int = int(os.getenv("EMBEDDING_MAX_TOKENS", "1000"))
    embedding_batch_size: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "20"))
    embedding_batch_delay: float = float(os.getenv("EMBEDDING_BATCH_DELAY", "0.2"))
    jina_api_key: str | None = os.getenv("JINA_API_KEY")
    jina_api_url: str = os.getenv("JINA_API_URL", "https://api.jina.ai/v1/embeddings")
    jina_embedding_model: str = os.getenv("JINA_EMBEDDING_MODEL", "jina-embeddings-v3")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str | None = os.getenv("OPENAI_EMBEDDING_MODEL")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_embedding_model: str | None = os.getenv("GEMINI_EMBEDDING_MODEL")
    gemini_chat_model: str | None = os.getenv("GEMINI_CHAT_MODEL")
    milvus_uri: str = os.getenv("MILVUS_URI", "http://localhost:19530")
    milvus_token: str | None = os.getenv("MILVUS_TOKEN")
    milvus_collection: str = os.getenv("MILVUS_COLLECTION", "news_articles")
    milvus_consistency: str = os.getenv("MILVUS_CONSISTENCY", "Strong")
    milvus_index_type: str = os.getenv("MILVUS_INDEX_TYPE", "IVF_FLAT")
    milvus_metric_type: str = os.getenv("MILVUS_METRIC_TYPE", "COSINE")
    milvus_nlist: int = int(os.getenv("MILVUS_NLIST", "1024"))
    milvus_nprobe: int = int(os.getenv("MILVUS_NPROBE", "10"))
    chunk_size: int = int(os.getenv("RAG_CHUNK_SIZE", "6000"))
    chunk_overlap: int = int(os.getenv("RAG_CHUNK_OVERLAP", "200"))
    min_chunk_size: int = int(os.getenv("RAG_MIN_CHUNK_SIZE", "100"))
    top_k: int = int(os.getenv("RAG_TOP_K", "5"))
    min_score: float | None = _optional_float("RAG_MIN_SCORE")
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "extractive")
    llm_context_max_chars: int = int(os.getenv("RAG_LLM_CONTEXT_MAX_CHARS", "12000"))
    llm_temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.2"))
    llm_max_tokens: int = int(os.getenv("LLM_MAX_TOKENS", "1024"))
    llm_timeout: float = float(os.getenv("LLM_TIMEOUT", "60"))
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    cache_backend: str = os.getenv("RAG_CACHE_BACKEND", "memory")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_prefix: str = os.getenv("REDIS_PREFIX", "news_rag:")
    session_ttl: int = int(os.getenv("REDIS_TTL", "3600"))
    query_cache_ttl: int = int(os.getenv("RAG_QUERY_CACHE_TTL", "3600"))
    chat_history_turns: int = int(os.getenv("RAG_CHAT_HISTORY_TURNS", "10"))
    history_db_uri: str | None = os.getenv("RAG_HISTORY_DB_URI")
    metrics_enabled: bool = _flag("RAG_METRICS_ENABLED", "true")
    rss_feeds_raw: str = os.getenv("RAG_RSS_FEEDS", "")
    rss_max_items: int = int(os.getenv("RAG_RSS_MAX_ITEMS", "20"))
    rss_fetch_full_content: bool = _flag("RAG_RSS_FETCH_FULL_CONTENT", "false")
    cors_origins_raw: str = os.getenv("RAG_CORS_ORIGINS", "*")

    @property
    def rss_feeds(self) -> list[str]:
        raw = os.getenv("RAG_RSS_FEEDS", self.rss_feeds_raw)
        return [value.strip() for value in raw.split(",") if value.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return [value.strip() for value in self.cors_origins_raw.split(",") if value.strip()]


settings = Settings()
