"""Shared fixtures for the ingestion and retrieval tests."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

import pytest

from confluence_rag import embeddings
from confluence_rag.ingest.markdown import MarkdownExtractor
from confluence_rag.ingest.people import UserDirectory

PEOPLE = [
    {
        "accountId": "557058:12345678-1234-5678-9012-123456789abc",
        "displayName": "Jane Smith",
        "email": "janesmith@testcompany.com",
    },
    {
        "accountId": "5fad1bf6c824730070816da5",
        "displayName": "John Doe",
        "email": "johndoe@testcompany.com",
    },
]


@pytest.fixture
def people_file(tmp_path: Path) -> Path:
    path = tmp_path / "atlassian" / "people.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(PEOPLE), encoding="utf-8")
    return path


@pytest.fixture
def extractor() -> MarkdownExtractor:
    return MarkdownExtractor()


@pytest.fixture
def people_extractor(people_file: Path) -> MarkdownExtractor:
    return MarkdownExtractor(UserDirectory.from_file(people_file))


@pytest.fixture
def deterministic_embedder(monkeypatch: pytest.MonkeyPatch) -> embeddings.EmbeddingModel:
    monkeypatch.setenv("INSTALL_HEAVY", "false")
    embeddings.reset_embedding_model_cache()
    yield embeddings.EmbeddingModel()
    embeddings.reset_embedding_model_cache()


@pytest.fixture
def audit_logger() -> logging.Logger:
    logger = logging.getLogger("tests.ingest.audit")
    logger.setLevel(logging.INFO)
    return logger


class WordTokenCounter:
    """Counts whitespace-separated words, standing in for a real tokenizer."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def count_tokens(self, text: str) -> int:
        self.calls.append(text)
        return len(text.split())


@pytest.fixture
def word_counter() -> WordTokenCounter:
    return WordTokenCounter()
