"""Ingestion helpers: storage-format extraction, chunking and record assembly."""
from .chunking import ChunkingConfig, ChunkSizeMode, HeadingAwareChunker, chunk_lines
from .entities import normalize_entities
from .headings import HeadingContext, track_headings
from .markdown import MarkdownExtractionResult, MarkdownExtractor, extract_markdown
from .models import Chunk, ChunkRecord, SourceDocument
from .people import UserDirectory
from .pipeline import IngestPipeline, IngestPipelineConfig

__all__ = [
    "Chunk",
    "ChunkRecord",
    "ChunkSizeMode",
    "ChunkingConfig",
    "HeadingAwareChunker",
    "HeadingContext",
    "IngestPipeline",
    "IngestPipelineConfig",
    "MarkdownExtractionResult",
    "MarkdownExtractor",
    "SourceDocument",
    "UserDirectory",
    "chunk_lines",
    "extract_markdown",
    "normalize_entities",
    "track_headings",
]
