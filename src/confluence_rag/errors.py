"""Common exceptions raised by the ingestion and retrieval layers."""
from __future__ import annotations


class DimensionMismatchError(ValueError):
    """Raised when two vectors that must share a dimensionality do not."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected vector of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EmbeddingUnavailableError(RuntimeError):
    """Raised when the embedding backend cannot be initialised or queried."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class TokenizerUnavailableError(RuntimeError):
    """Raised when a tokenizer for token-length chunking cannot be loaded."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause
