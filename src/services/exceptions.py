"""Error types raised by the embedding pipeline and search services."""

from __future__ import annotations


class EmbeddingServiceError(Exception):
    """Base exception for embedding and semantic search failures."""


class InvalidInputError(EmbeddingServiceError, ValueError):
    """Raised when text handed to the encoder is empty or whitespace."""


class UpstreamError(EmbeddingServiceError, RuntimeError):
    """Raised when the embedding backend fails or answers with unusable data."""


class EmbeddingDimensionError(EmbeddingServiceError, ValueError):
    """Raised when a vector does not match the dimension of the collection."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
