"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence

from confluence_rag.embeddings import FALLBACK_DIMENSION, get_embedding_model
from confluence_rag.errors import DimensionMismatchError
from confluence_rag.logging_config import get_ingest_audit_logger

from .chunking import ChunkingConfig, HeadingAwareChunker
from .markdown import MarkdownExtractor
from .models import ChunkRecord, SourceDocument
from .people import UserDirectory

LOGGER = logging.getLogger(__name__)


class Embedder(Protocol):
    def encode(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one embedding per text."""


@dataclass(slots=True)
class IngestPipelineConfig:
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    people_path: Optional[str] = None
    embedding_dimension: int = FALLBACK_DIMENSION

    @classmethod
    def from_env(cls) -> "IngestPipelineConfig":
        return cls(
            chunking=ChunkingConfig.from_env(),
            people_path=os.getenv("PEOPLE_PATH") or None,
            embedding_dimension=int(os.getenv("EMBEDDING_DIMENSION", FALLBACK_DIMENSION)),
        )


class IngestPipeline:
    """Pipeline turning Confluence pages into embedded chunk records."""

    def __init__(
        self,
        config: Optional[IngestPipelineConfig] = None,
        *,
        embedder: Optional[Embedder] = None,
        extractor: Optional[MarkdownExtractor] = None,
        chunker: Optional[HeadingAwareChunker] = None,
        audit_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or IngestPipelineConfig()
        self.extractor = extractor or MarkdownExtractor(UserDirectory.from_file(self.config.people_path))
        self.chunker = chunker or HeadingAwareChunker(self.config.chunking)
        self._embedder = embedder
        self._audit_logger = audit_logger

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = get_embedding_model()
        return self._embedder

    @property
    def audit_logger(self) -> logging.Logger:
        if self._audit_logger is None:
            self._audit_logger = get_ingest_audit_logger()
        return self._audit_logger

    def ingest(self, document: SourceDocument) -> List[ChunkRecord]:
        """Extract, chunk and embed one document."""

        started = time.perf_counter()
        if not document.body.strip():
            LOGGER.info("Skipping page %s (%s): empty body", document.page_id, document.title)
            self._audit(document, started, chunks=0, lines=0)
            return []

        extraction = self.extractor.extract(document.body)
        if extraction.parse_failed:
            LOGGER.warning(
                "Page %s (%s) could not be parsed: %s",
                document.page_id,
                document.title,
                extraction.parse_error,
            )
        lines = [line for line in extraction.lines if line.strip()]
        chunks = self.chunker.chunk(lines)
        if not chunks:
            self._audit(document, started, chunks=0, lines=len(lines), parse_error=extraction.parse_error)
            return []

        embeddings = self.embedder.encode([chunk.text for chunk in chunks])
        if len(embeddings) != len(chunks):
            raise ValueError(f"Embedder returned {len(embeddings)} vectors for {len(chunks)} chunks")
        for embedding in embeddings:
            if len(embedding) != self.config.embedding_dimension:
                raise DimensionMismatchError(self.config.embedding_dimension, len(embedding))

        records = [
            ChunkRecord.from_chunk(document, chunk, embedding)
            for chunk, embedding in zip(chunks, embeddings)
        ]
        for record in records:
            LOGGER.debug(
                "Record %s/%s headings %s",
                record.page_id,
                record.chunk_index,
                record.headings,
            )
        LOGGER.info("Generated %s chunks for page %s (%s)", len(records), document.page_id, document.title)
        self._audit(document, started, chunks=len(records), lines=len(lines))
        return records

    def ingest_payload(self, payload: Mapping[str, Any]) -> List[ChunkRecord]:
        """Ingest a page object as returned by the content REST API."""

        return self.ingest(SourceDocument.from_page_payload(payload))

    def ingest_many(self, documents: Iterable[SourceDocument]) -> List[ChunkRecord]:
        """Ingest ``documents`` in order, skipping any document that fails."""

        records: List[ChunkRecord] = []
        for document in documents:
            try:
                records.extend(self.ingest(document))
            except Exception as error:
                LOGGER.exception("Failed to ingest page %s (%s)", document.page_id, document.title)
                self._audit(document, None, chunks=0, lines=0, error=str(error))
        return records

    def _audit(
        self,
        document: SourceDocument,
        started: Optional[float],
        *,
        chunks: int,
        lines: int,
        parse_error: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        entry: dict[str, Any] = {
            "event": "ingest",
            "status": "error" if error else "ok",
            "page_id": document.page_id,
            "title": document.title,
            "lines": lines,
            "chunks": chunks,
        }
        if started is not None:
            entry["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 3)
        if parse_error:
            entry["parse_error"] = parse_error
        if error:
            entry["error"] = error
        self.audit_logger.info(entry)
