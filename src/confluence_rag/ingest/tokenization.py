"""Token counting used by the chunker in token-size mode."""
from __future__ import annotations

import logging
import os
import threading
from typing import Optional, Protocol

from confluence_rag.errors import TokenizerUnavailableError

LOGGER = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
MAX_TOKEN_LENGTH = 512


class TokenCounter(Protocol):
    """Protocol describing the tokenizer contract used by the chunker."""

    def count_tokens(self, text: str) -> int:
        """Return the number of tokens ``text`` encodes to."""


class HuggingFaceTokenCounter:
    """Count tokens with a Hugging Face tokenizer loaded on first use."""

    def __init__(self, model_name_or_path: str | None = None, *, max_length: int = MAX_TOKEN_LENGTH) -> None:
        self.model_name = (
            model_name_or_path
            or os.getenv("TOKENIZER_MODEL_PATH")
            or os.getenv("EMBEDDING_MODEL_PATH")
            or DEFAULT_TOKENIZER_MODEL
        )
        self.max_length = max_length
        self._tokenizer: Optional[object] = None
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> object:
        if self._tokenizer is not None:
            return self._tokenizer
        with self._lock:
            if self._tokenizer is not None:
                return self._tokenizer
            try:
                from transformers import AutoTokenizer
            except ImportError as error:
                raise TokenizerUnavailableError(
                    "transformers is not installed; token-size chunking is unavailable",
                    cause=error,
                ) from error
            LOGGER.info("Loading tokenizer from %s", self.model_name)
            try:
                self._tokenizer = AutoTokenizer.from_pretrained(self.model_name)
            except (OSError, ValueError) as error:
                raise TokenizerUnavailableError(
                    f"Failed to load tokenizer '{self.model_name}'", cause=error
                ) from error
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        tokenizer = self._ensure_loaded()
        encoded = tokenizer(  # type: ignore[operator]
            text,
            add_special_tokens=True,
            truncation=True,
            max_length=self.max_length,
        )
        return len(encoded["input_ids"])
