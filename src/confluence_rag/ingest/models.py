"""Data models used by the ingestion pipeline."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOGGER = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            LOGGER.debug("Ignoring unparseable timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SourceDocument(BaseModel):
    """A single Confluence page as handed to the ingest pipeline."""

    model_config = ConfigDict(frozen=True)

    page_id: str
    title: str = "untitled"
    web_url: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    body: str = ""
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None

    @field_validator("created_at", "last_modified_at", mode="before")
    @classmethod
    def _normalise_timestamp(cls, value: Any) -> Optional[datetime]:
        return _parse_timestamp(value)

    @field_validator("labels", mode="before")
    @classmethod
    def _drop_blank_labels(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(label).strip() for label in value if label is not None and str(label).strip()]

    @classmethod
    def from_page_payload(cls, payload: Mapping[str, Any]) -> "SourceDocument":
        """Build a document from a page object as returned by the content REST API."""

        links = payload.get("_links") or {}
        storage = (payload.get("body") or {}).get("storage") or {}
        version = payload.get("version") or {}
        history = payload.get("history") or {}

        labels = payload.get("labels") or []
        if isinstance(labels, Mapping):
            labels = labels.get("results") or []
        label_names = [label.get("name") if isinstance(label, Mapping) else label for label in labels]

        return cls(
            page_id=str(payload["id"]),
            title=payload.get("title") or "untitled",
            web_url=links.get("webui"),
            labels=label_names,
            body=storage.get("value") or "",
            created_at=history.get("createdDate"),
            last_modified_at=version.get("when"),
        )


@dataclass(frozen=True, slots=True)
class Chunk:
    """A window of extracted lines together with its heading lineage."""

    text: str
    headings: Tuple[str, ...]
    index: int
    start_line: int
    end_line: int


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class ChunkRecord:
    """Embedding-ready chunk with the metadata of its source document."""

    page_id: str
    web_url: Optional[str]
    title: str
    labels: Tuple[str, ...]
    headings: Tuple[str, ...]
    chunk_index: int
    chunk_text: str
    created_date: Optional[str] = None
    last_modified_date: Optional[str] = None
    embedding: Tuple[float, ...] = field(default=(), repr=False)

    @classmethod
    def from_chunk(
        cls, document: SourceDocument, chunk: Chunk, embedding: List[float] | Tuple[float, ...]
    ) -> "ChunkRecord":
        return cls(
            page_id=document.page_id,
            web_url=document.web_url,
            title=document.title,
            labels=tuple(document.labels),
            headings=tuple(chunk.headings),
            chunk_index=chunk.index,
            chunk_text=chunk.text,
            created_date=_isoformat(document.created_at),
            last_modified_date=_isoformat(document.last_modified_at),
            embedding=tuple(float(value) for value in embedding),
        )

    def metadata(self) -> Dict[str, Any]:
        """Return JSON-serialisable metadata for the record, without the embedding."""

        return {
            "pageId": self.page_id,
            "webUI": self.web_url,
            "title": self.title,
            "labels": list(self.labels),
            "headings": list(self.headings),
            "chunkIndex": self.chunk_index,
            "chunkText": self.chunk_text,
            "createdDate": self.created_date,
            "lastModifiedDate": self.last_modified_date,
        }
