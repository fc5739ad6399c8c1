from __future__ import annotations

"""Embedding providers, configuration validation and the batching gateway."""

import asyncio
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx

from src.rag.errors import NewsRAGError, ProviderError

_TOKEN_RE = re.compile(r"[a-z0-9]+")

logger = logging.getLogger(__name__)


class EmbeddingProviderError(ProviderError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(NewsRAGError):
    """Raised when embedding configuration is invalid."""
    pass


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding vector per text, in order."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int | None = None) -> list[float]:
    """Validate embedding values and optionally their dimension."""
    if dimension is not None and len(vector) != dimension:
        raise EmbeddingProviderError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingProviderError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingProviderError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using token hashing and L2 normalization."""
        return [self.embed_text(text) for text in texts]

    def embed_text(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower())
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(self._l2_normalize(vector), self.dimension)

    def _l2_normalize(self, vector: list[float]) -> list[float]:
        """Normalize vector magnitude to 1.0."""
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


_KNOWN_DIMENSIONS = {
    "jina": {
        "jina-embeddings-v3": 1024,
        "jina-embeddings-v2-base-en": 768,
        "jina-embeddings-v2-small-en": 512,
    },
    "openai": {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    },
    "gemini": {},
}


def resolve_model_dimension(provider: str, model: str) -> int | None:
    """Return the documented dimension for a provider model, if known."""
    return _KNOWN_DIMENSIONS.get(provider, {}).get(model)


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding configuration."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Build a validation report for embedding settings."""
    normalized = provider.lower().strip()
    if normalized == "google":
        normalized = "gemini"

    def report(ok: bool, status: str, expected: int | None = None, **kwargs: Any):
        return EmbeddingConfigReport(
            provider=normalized or "hash",
            model=model if normalized not in {"", "hash"} else None,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=ok,
            status=status,
            **kwargs,
        )

    if normalized in {"", "hash"}:
        if dimension <= 0:
            return report(
                False,
                "error",
                detail="EMBEDDING_DIMENSION must be greater than zero for hash embeddings.",
                action="Set EMBEDDING_DIMENSION to a positive integer.",
            )
        return report(True, "ok", expected=dimension)

    if normalized not in _KNOWN_DIMENSIONS:
        return report(
            False,
            "error",
            detail="Unsupported embedding provider.",
            action="Set EMBEDDING_PROVIDER to hash, jina, openai, or gemini.",
        )

    env_prefix = normalized.upper()
    if not model:
        return report(
            False,
            "error",
            detail=f"{env_prefix}_EMBEDDING_MODEL is required for {normalized} embeddings.",
            action=f"Set {env_prefix}_EMBEDDING_MODEL in .env.",
        )
    expected = resolve_model_dimension(normalized, model)
    if dimension <= 0:
        action = (
            f"Set EMBEDDING_DIMENSION to {expected}."
            if expected is not None
            else "Set EMBEDDING_DIMENSION based on the model documentation."
        )
        return report(
            False,
            "error",
            expected=expected,
            detail="EMBEDDING_DIMENSION must be set for the configured model.",
            action=action,
        )
    if expected is not None and dimension != expected:
        return report(
            False,
            "error",
            expected=expected,
            detail="EMBEDDING_DIMENSION does not match the model dimension.",
            action=f"Set EMBEDDING_DIMENSION to {expected}.",
        )
    if expected is None:
        return report(
            True,
            "warning",
            detail="Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
        )
    return report(True, "ok", expected=expected)


@dataclass
class JinaEmbedder:
    """Embedding provider using the Jina embeddings HTTP API."""
    api_key: str
    model: str = "jina-embeddings-v3"
    dimension: int = 1024
    api_url: str = "https://api.jina.ai/v1/embeddings"
    timeout: float = 30.0
    client: httpx.AsyncClient | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise EmbeddingConfigError("JINA_API_KEY is required for JinaEmbedder")
        if not self.model:
            raise EmbeddingConfigError("JINA_EMBEDDING_MODEL is required for JinaEmbedder")

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a group of texts with a single API call."""
        payload = {"input": texts, "model": self.model}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        owns_client = self.client is None
        client = self.client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingProviderError(str(exc)) from exc
        finally:
            if owns_client:
                await client.aclose()
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise EmbeddingProviderError("Jina response missing embedding data")
        items = sorted(items, key=lambda item: item.get("index", 0))
        return [validate_vector(list(item.get("embedding") or [])) for item in items]


@dataclass
class OpenAIEmbedder:
    """Embedding provider using OpenAI embeddings API."""
    api_key: str
    model: str
    dimension: int
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate OpenAI configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        resolved = resolve_model_dimension("openai", self.model)
        if self.dimension <= 0:
            if resolved is None:
                raise EmbeddingConfigError(
                    "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
                )
            self.dimension = resolved
        elif resolved is not None and self.dimension != resolved:
            raise EmbeddingConfigError(
                f"EMBEDDING_DIMENSION should be {resolved} for model {self.model}"
            )
        try:
            from openai import AsyncOpenAI
        except ImportError as exc:
            raise EmbeddingConfigError("openai package is required for OpenAIEmbedder") from exc
        self.client = AsyncOpenAI(api_key=self.api_key)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using the OpenAI embeddings API."""
        try:
            response = await self.client.embeddings.create(model=self.model, input=texts)
        except Exception as exc:
            raise EmbeddingProviderError(str(exc)) from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [validate_vector(list(item.embedding)) for item in ordered]


@dataclass
class GeminiEmbedder:
    """Embedding provider using Gemini embeddings API."""
    api_key: str
    model: str
    dimension: int
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate Gemini configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("GEMINI_API_KEY is required for GeminiEmbedder")
        if not self.model:
            raise EmbeddingConfigError("GEMINI_EMBEDDING_MODEL is required for GeminiEmbedder")
        if self.dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be set for Gemini embeddings")
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise EmbeddingConfigError(
                "google-generativeai package is required for GeminiEmbedder"
            ) from exc
        genai.configure(api_key=self.api_key)
        self.client = genai

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using the Gemini embeddings API in a worker thread."""

        def _run() -> Any:
            return self.client.embed_content(model=self.model, content=texts)

        try:
            result = await asyncio.to_thread(_run)
        except Exception as exc:
            raise EmbeddingProviderError(str(exc)) from exc
        embedding = result.get("embedding") if isinstance(result, dict) else None
        if embedding is None:
            embedding = getattr(result, "embedding", None)
        if embedding is None:
            raise EmbeddingProviderError("Gemini embedding response missing embedding vector")
        if embedding and not isinstance(embedding[0], (list, tuple)):
            embedding = [embedding]
        return [validate_vector(list(vector)) for vector in embedding]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Truncation and batching settings for the embedding gateway."""
    max_tokens: int = 1000
    chars_per_token: int = 4
    batch_size: int = 20
    batch_delay: float = 0.2
    fallback_delay: float = 0.1

    @property
    def max_chars(self) -> int:
        return self.max_tokens * self.chars_per_token


@dataclass
class EmbeddingGateway:
    """Truncate, batch and fall back around an embedding provider."""
    provider: EmbeddingProvider
    config: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def truncate(self, text: str) -> str:
        """Trim text to the approximate token budget of the provider."""
        max_chars = self.config.max_chars
        if len(text) > max_chars:
            logger.warning(
                "embedding_text_truncated",
                extra={"original_length": len(text), "max_chars": max_chars},
            )
            return text[:max_chars]
        return text

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text after truncation."""
        return await self._embed_truncated(self.truncate(text))

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts group by group, falling back per item on group failure."""
        truncated = [self.truncate(text) for text in texts]
        batch_size = max(1, self.config.batch_size)
        total_batches = math.ceil(len(truncated) / batch_size)
        embeddings: list[list[float]] = []
        for batch_number, offset in enumerate(range(0, len(truncated), batch_size), start=1):
            batch = truncated[offset : offset + batch_size]
            try:
                vectors = await self.provider.embed(batch)
                if len(vectors) != len(batch):
                    raise EmbeddingProviderError(
                        f"Provider returned {len(vectors)} embeddings for {len(batch)} texts"
                    )
            except Exception as exc:
                logger.error(
                    "embedding_batch_failed",
                    extra={
                        "batch": batch_number,
                        "batches": total_batches,
                        "size": len(batch),
                        "detail": type(exc).__name__,
                    },
                )
                if len(batch) == 1:
                    if isinstance(exc, EmbeddingProviderError):
                        raise
                    raise EmbeddingProviderError(
                        f"Failed to generate batch embeddings: {exc}"
                    ) from exc
                embeddings.extend(await self._embed_individually(batch, offset))
                continue
            embeddings.extend(vectors)
            if batch_number < total_batches:
                await self.sleep(self.config.batch_delay)
        return embeddings

    async def _embed_individually(self, batch: list[str], offset: int) -> list[list[float]]:
        """Embed each text on its own, substituting zero vectors for failures."""
        logger.info("embedding_batch_fallback", extra={"offset": offset, "size": len(batch)})
        vectors: list[list[float]] = []
        for position, text in enumerate(batch):
            if position:
                await self.sleep(self.config.fallback_delay)
            try:
                vectors.append(await self._embed_truncated(text))
            except EmbeddingProviderError as exc:
                logger.warning(
                    "embedding_zero_vector_placeholder",
                    extra={"index": offset + position, "detail": type(exc).__name__},
                )
                vectors.append([0.0] * self.dimension)
        return vectors

    async def _embed_truncated(self, text: str) -> list[float]:
        try:
            vectors = await self.provider.embed([text])
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(f"Failed to generate embedding: {exc}") from exc
        if len(vectors) != 1:
            raise EmbeddingProviderError("Provider returned no embedding for the text")
        return vectors[0]
