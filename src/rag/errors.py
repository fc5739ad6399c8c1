from __future__ import annotations

"""Error taxonomy shared by ingestion, retrieval and chat."""


class NewsRAGError(RuntimeError):
    """Base class for errors raised by the news RAG service."""
    pass


class ProviderError(NewsRAGError):
    """Raised when an external provider call fails."""
    pass


class ValidationError(NewsRAGError):
    """Raised when inputs violate a structural constraint."""
    pass


class DimensionMismatchError(ValidationError):
    """Raised when a vector length differs from the configured dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class NotFoundError(NewsRAGError):
    """Raised when a session or record does not exist."""
    pass


class CacheError(NewsRAGError):
    """Raised by cache stores; never surfaced past the session cache."""
    pass


class IngestionError(NewsRAGError):
    """Raised when an ingestion run fails unrecoverably."""
    pass


class AnswerError(NewsRAGError):
    """Raised when retrieval or answer generation fails."""
    pass


class ChatError(NewsRAGError):
    """Raised when a chat turn cannot be processed."""
    pass
