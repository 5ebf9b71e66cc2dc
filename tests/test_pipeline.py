from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Sequence

import pytest

from confluence_rag.errors import DimensionMismatchError
from confluence_rag.ingest.chunking import ChunkingConfig
from confluence_rag.ingest.models import SourceDocument
from confluence_rag.ingest.pipeline import IngestPipeline, IngestPipelineConfig

BODY = """<h1>Runbook</h1>
<p>Owner: <ri:user ri:account-id="5fad1bf6c824730070816da5" /></p>
<h2>Deploy</h2>
<ol><li>Build the image</li><li>Push it</li></ol>
<table><tr><th>Env</th><th>Host</th></tr><tr><td>prod</td><td>app01</td></tr></table>
"""


class _FixedEmbedder:
    def __init__(self, dimension: int = 384) -> None:
        self.dimension = dimension
        self.batches: List[List[str]] = []

    def encode(self, texts: Sequence[str]) -> List[List[float]]:
        self.batches.append(list(texts))
        return [[float(index)] * self.dimension for index, _ in enumerate(texts)]


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def audit_records(audit_logger: logging.Logger):
    handler = _ListHandler()
    audit_logger.addHandler(handler)
    yield handler.records
    audit_logger.removeHandler(handler)


def _document(page_id: str = "42", body: str = BODY) -> SourceDocument:
    return SourceDocument(page_id=page_id, title="Runbook", web_url="/pages/42", labels=["ops"], body=body)


def _pipeline(people_file: Path, audit_logger: logging.Logger, embedder=None, max_size: int = 40) -> IngestPipeline:
    config = IngestPipelineConfig(
        chunking=ChunkingConfig(max_size=max_size, overlap=0),
        people_path=str(people_file),
    )
    return IngestPipeline(config, embedder=embedder or _FixedEmbedder(), audit_logger=audit_logger)


def test_ingest_produces_records_with_heading_lineage(people_file: Path, audit_logger, audit_records) -> None:
    embedder = _FixedEmbedder()
    pipeline = _pipeline(people_file, audit_logger, embedder)

    records = pipeline.ingest(_document())

    texts = [record.chunk_text for record in records]
    assert "\n".join(texts).splitlines() == [
        "# Runbook",
        "Owner: User: John Doe",
        "## Deploy",
        "1. Build the image",
        "2. Push it",
        "| Env | Host |",
        "| --- | --- |",
        "| prod | app01 |",
    ]
    assert [record.chunk_index for record in records] == list(range(len(records)))
    assert records[0].headings == ("Runbook", "", "", "", "", "")
    assert records[-1].headings == ("Runbook", "Deploy", "", "", "", "")
    assert all(record.page_id == "42" and record.labels == ("ops",) for record in records)
    assert all(len(record.embedding) == 384 for record in records)
    assert embedder.batches == [texts]

    assert len(audit_records) == 1
    entry = audit_records[0].msg
    assert entry["page_id"] == "42"
    assert entry["status"] == "ok"
    assert entry["chunks"] == len(records)


def test_blank_body_yields_no_records(people_file: Path, audit_logger, audit_records) -> None:
    embedder = _FixedEmbedder()
    pipeline = _pipeline(people_file, audit_logger, embedder)

    assert pipeline.ingest(_document(body="  ")) == []
    assert embedder.batches == []
    assert audit_records[0].msg["chunks"] == 0


def test_unparseable_body_is_reported(people_file: Path, audit_logger, audit_records) -> None:
    pipeline = _pipeline(people_file, audit_logger)

    assert pipeline.ingest(_document(body="<p>broken")) == []
    assert audit_records[0].msg["parse_error"]


def test_dimension_mismatch_is_raised(people_file: Path, audit_logger) -> None:
    pipeline = _pipeline(people_file, audit_logger, _FixedEmbedder(dimension=3))

    with pytest.raises(DimensionMismatchError):
        pipeline.ingest(_document())


def test_ingest_many_skips_failing_documents(people_file: Path, audit_logger, audit_records, caplog) -> None:
    class _FlakyEmbedder(_FixedEmbedder):
        def encode(self, texts: Sequence[str]) -> List[List[float]]:
            if any("explode" in text for text in texts):
                raise RuntimeError("backend down")
            return super().encode(texts)

    pipeline = _pipeline(people_file, audit_logger, _FlakyEmbedder(), max_size=1000)
    documents = [
        _document("1", "<p>first</p>"),
        _document("2", "<p>explode</p>"),
        _document("3", "<p>third</p>"),
    ]

    with caplog.at_level(logging.ERROR, logger="confluence_rag.ingest.pipeline"):
        records = pipeline.ingest_many(documents)

    assert [record.page_id for record in records] == ["1", "3"]
    assert "Failed to ingest page 2" in caplog.text
    statuses = [(record.msg["page_id"], record.msg["status"]) for record in audit_records]
    assert statuses == [("1", "ok"), ("2", "error"), ("3", "ok")]


def test_ingest_payload(people_file: Path, audit_logger) -> None:
    pipeline = _pipeline(people_file, audit_logger, max_size=1000)
    payload = {
        "id": "7",
        "title": "FAQ",
        "body": {"storage": {"value": "<p>Answer</p>"}},
        "version": {"when": "2024-03-15T14:30:00Z"},
    }

    (record,) = pipeline.ingest_payload(payload)

    assert record.metadata()["lastModifiedDate"] == "2024-03-15T14:30:00Z"
    assert record.chunk_text == "Answer"


def test_default_embedder_uses_fallback(deterministic_embedder, audit_logger) -> None:
    pipeline = IngestPipeline(audit_logger=audit_logger)

    (record,) = pipeline.ingest(_document(body="<p>hello</p>"))

    assert list(record.embedding) == pytest.approx(deterministic_embedder.embed("hello"))


def test_config_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PEOPLE_PATH", str(tmp_path / "people.json"))
    monkeypatch.setenv("EMBEDDING_DIMENSION", "768")
    monkeypatch.setenv("CHUNK_MAX_SIZE", "500")

    config = IngestPipelineConfig.from_env()

    assert config.people_path == str(tmp_path / "people.json")
    assert config.embedding_dimension == 768
    assert config.chunking.max_size == 500


def test_audit_entries_are_json_serialisable(people_file: Path, audit_logger, audit_records) -> None:
    _pipeline(people_file, audit_logger).ingest(_document())

    json.dumps(audit_records[0].msg)
