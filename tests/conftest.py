"""
Pytest configuration and shared fixtures.
"""

import tempfile
import zlib
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest
from langchain_core.documents import Document

from reflective_memory.config import EmbeddingConfig, LLMConfig, RMMConfig
from reflective_memory.encoding.embedder import BaseEmbedder
from reflective_memory.encoding.generator import BaseGenerator
from reflective_memory.models.memory import MemoryEntry
from reflective_memory.storage.base import InMemoryStore

DIMENSION = 4


class FakeEmbedder(BaseEmbedder):
    """Deterministic embedder: fixed vectors for known texts, seeded noise otherwise."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = DIMENSION):
        super().__init__(EmbeddingConfig(dimensions=dimension))
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        rng = np.random.default_rng(zlib.crc32(text.encode()))
        return rng.normal(size=self.config.dimensions).tolist()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.extend(texts)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return [self._vector(t) for t in texts]


class FakeGenerator(BaseGenerator):
    """Returns queued responses (or the result of a callable) and records prompts."""

    def __init__(self, responses: list[str] | Callable[[str], str] | None = None):
        super().__init__(LLMConfig())
        self.responses = responses if responses is not None else []
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if callable(self.responses):
            return self.responses(prompt)
        if not self.responses:
            raise RuntimeError("LLM unavailable")
        return self.responses.pop(0)


class FakeIndex:
    """In-memory memory bank returning documents in insertion order."""

    def __init__(self, documents: list[Document] | None = None):
        self.documents: list[Document] = list(documents or [])
        self.queries: list[tuple[str, int]] = []
        self.added: list[Document] = []
        self.deleted: list[str] = []

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs: Any) -> list[Document]:
        self.queries.append((query, k))
        return self.documents[:k]

    async def aadd_documents(self, documents: list[Document], **kwargs: Any) -> list[str]:
        ids = kwargs.get("ids") or [d.id or d.metadata.get("id") for d in documents]
        for doc, doc_id in zip(documents, ids):
            self.documents = [d for d in self.documents if d.metadata.get("id") != doc_id]
            self.documents.append(doc)
            self.added.append(doc)
        return ids

    async def adelete(self, ids: list[str] | None = None, **kwargs: Any) -> bool:
        ids = ids or []
        self.deleted.extend(ids)
        self.documents = [d for d in self.documents if d.metadata.get("id") not in ids]
        return True


def make_document(memory_id: str, summary: str, **metadata: Any) -> Document:
    base = {
        "id": memory_id,
        "sessionId": "session-1",
        "timestamp": 1_700_000_000_000,
        "turnReferences": [0],
        "rawDialogue": f"SPEAKER_1: {summary}",
    }
    base.update(metadata)
    return Document(page_content=summary, metadata=base)


def make_memory(summary: str = "SPEAKER_1 enjoys hiking on weekends.", **kwargs: Any) -> MemoryEntry:
    fields = {
        "topic_summary": summary,
        "raw_dialogue": "SPEAKER_1: I love hiking every weekend.",
        "session_id": "session-1",
        "turn_references": [0],
    }
    fields.update(kwargs)
    return MemoryEntry(**fields)


@pytest.fixture
def temp_directory():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_user_id():
    """Provide a sample user ID."""
    return "test_user_123"


@pytest.fixture
def config():
    """Configuration with a small embedding dimension."""
    return RMMConfig(embedding=EmbeddingConfig(dimensions=DIMENSION))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def index():
    return FakeIndex()
