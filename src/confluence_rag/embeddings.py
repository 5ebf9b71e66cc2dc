"""Embedding helpers backed by Sentence Transformers."""
from __future__ import annotations

import hashlib
import logging
import os
import random
import time
from functools import lru_cache
from typing import List, Sequence

from .errors import EmbeddingUnavailableError

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
FALLBACK_DIMENSION = 384
FALLBACK_MODEL_NAME = "deterministic-fallback"

LOGGER = logging.getLogger(__name__)


def _install_heavy_enabled() -> bool:
    """Return whether the sentence-transformers model should be loaded."""

    flag = os.getenv("INSTALL_HEAVY", "true").strip().lower()
    return flag not in {"0", "false", "no", "off"}


class EmbeddingModel:
    """Wrapper around a SentenceTransformer model.

    With ``INSTALL_HEAVY=false`` no model is loaded and each text maps to a
    pseudo-random vector seeded by its SHA-256 digest, which keeps offline
    runs and tests reproducible.
    """

    def __init__(
        self,
        model_name_or_path: str | None = None,
        *,
        device: str | None = None,
    ) -> None:
        model_path = model_name_or_path or os.getenv("EMBEDDING_MODEL_PATH", DEFAULT_MODEL_NAME)
        embedding_device = device or os.getenv("EMBEDDING_DEVICE")

        self._model = None
        self._dimension = FALLBACK_DIMENSION
        self._embedder = self._fallback_embed_texts
        self._model_name = model_path

        if not _install_heavy_enabled():
            LOGGER.info("INSTALL_HEAVY is disabled; using deterministic fallback embeddings.")
            self._model_name = FALLBACK_MODEL_NAME
            return

        from sentence_transformers import SentenceTransformer

        try:
            self._model = SentenceTransformer(model_path, device=embedding_device)
        except (OSError, ValueError, RuntimeError) as error:
            raise EmbeddingUnavailableError(
                f"Failed to initialize sentence-transformers model '{model_path}'", cause=error
            ) from error

        self._dimension = int(self._model.get_sentence_embedding_dimension())
        self._embedder = self._embed_texts_with_model
        LOGGER.info("Loaded embedding model %s (dimension %s)", model_path, self._dimension)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return int(self._dimension)

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        embeddings = self._embedder(texts)
        LOGGER.debug(
            "Embedded %s texts with %s in %.1f ms",
            len(texts),
            self._model_name,
            (time.perf_counter() - started) * 1000.0,
        )
        return embeddings

    def embed(self, text: str) -> List[float]:
        """Return the embedding of a single text."""

        return self.embed_texts([text])[0]

    def encode(self, texts: Sequence[str]) -> List[List[float]]:
        """Compatibility method mirroring the sentence-transformers API."""

        return self.embed_texts(texts)

    def _embed_texts_with_model(self, texts: Sequence[str]) -> List[List[float]]:
        try:
            embeddings = self._model.encode(  # type: ignore[union-attr]
                list(texts),
                convert_to_numpy=True,
                show_progress_bar=False,
                normalize_embeddings=False,
            )
        except RuntimeError as error:
            raise EmbeddingUnavailableError(
                f"Embedding model '{self._model_name}' failed to encode {len(texts)} texts", cause=error
            ) from error
        return embeddings.tolist()

    def _fallback_embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._deterministic_embedding(str(text)) for text in texts]

    def _deterministic_embedding(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest(), "big")
        rng = random.Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimension)]


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    return EmbeddingModel()


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()
