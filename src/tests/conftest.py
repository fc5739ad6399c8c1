from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["RAG_VECTORSTORE"] = "memory"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "256"
os.environ["EMBEDDING_BATCH_DELAY"] = "0"
os.environ["RAG_LLM_PROVIDER"] = "extractive"
os.environ["RAG_CACHE_BACKEND"] = "memory"
os.environ["RAG_CHUNK_SIZE"] = "1000"
os.environ["RAG_CHUNK_OVERLAP"] = "100"
os.environ["RAG_CORS_ORIGINS"] = "http://localhost:5173"
os.environ.pop("RAG_MIN_SCORE", None)
os.environ.pop("RAG_HISTORY_DB_URI", None)
os.environ.pop("RAG_RSS_FEEDS", None)
os.environ.pop("OPENAI_API_KEY", None)


@pytest.fixture
def anyio_backend():
    """The application is built on asyncio; run anyio-marked tests there."""
    return "asyncio"
