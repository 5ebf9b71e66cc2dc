"""In-memory retrieval of chunk records by cosine similarity."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Protocol, Sequence

from .ingest.models import ChunkRecord
from .similarity import cosine_similarity

LOGGER = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Protocol describing the embedding provider contract."""

    def encode(self, texts: Sequence[str]) -> List[List[float]]:
        """Return embeddings for the provided texts."""


@dataclass(frozen=True, slots=True)
class ChunkSearchResult:
    record: ChunkRecord
    score: float


class ChunkIndex:
    """Hold chunk records and rank them against a query embedding."""

    def __init__(self, records: Iterable[ChunkRecord] = ()) -> None:
        self._records: List[ChunkRecord] = list(records)

    def __len__(self) -> int:
        return len(self._records)

    def add(self, records: Iterable[ChunkRecord]) -> None:
        self._records.extend(records)

    def search(self, query_embedding: Sequence[float], top_k: int = 5) -> List[ChunkSearchResult]:
        """Return the ``top_k`` records most similar to ``query_embedding``."""

        if top_k <= 0 or not self._records:
            return []
        scored = [
            ChunkSearchResult(record=record, score=cosine_similarity(query_embedding, record.embedding))
            for record in self._records
        ]
        # sorted() is stable, so equal scores keep insertion order.
        scored = sorted(scored, key=lambda result: result.score, reverse=True)
        LOGGER.debug("Ranked %s records, returning %s", len(scored), min(top_k, len(scored)))
        return scored[:top_k]

    def search_text(self, text: str, embedder: EmbeddingProvider, top_k: int = 5) -> List[ChunkSearchResult]:
        """Embed ``text`` with ``embedder`` and search for it."""

        if top_k <= 0 or not self._records:
            return []
        embeddings = embedder.encode([text])
        if not embeddings:
            return []
        return self.search(embeddings[0], top_k=top_k)
