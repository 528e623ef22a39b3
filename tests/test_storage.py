"""
Tests for storage backends.
"""

import pytest
from datetime import timedelta

import chromadb
from langchain_core.documents import Document
from ulid import ULID

from reflective_memory.config import StorageConfig
from reflective_memory.storage.base import InMemoryStore, StorageError
from reflective_memory.storage.sqlite import SQLiteStore
from reflective_memory.storage.vector import ChromaMemoryIndex

from conftest import FakeEmbedder

NAMESPACE = ("rmm", "u1", "weights")


@pytest.fixture
def storage_config(temp_directory):
    """Create a storage config with temp paths."""
    return StorageConfig(
        sqlite_path=temp_directory / "test_rmm.db",
        chroma_persist_directory=temp_directory / "chroma",
        collection_name=f"memories_{ULID()}".lower(),
    )


@pytest.fixture
async def sqlite_store(storage_config):
    """Create and connect a SQLite store."""
    store = SQLiteStore(storage_config)
    await store.connect()
    yield store
    await store.disconnect()


class TestInMemoryStore:
    """Tests for the process-local store."""

    @pytest.mark.asyncio
    async def test_missing_key(self):
        assert await InMemoryStore().get(NAMESPACE, "reranker") is None

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        store = InMemoryStore()

        await store.put(NAMESPACE, "reranker", {"a": [1, 2]})
        item = await store.get(NAMESPACE, "reranker")

        assert item.value == {"a": [1, 2]}
        assert item.created_at == item.updated_at

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        """Test that callers cannot mutate stored values in place."""
        store = InMemoryStore()
        value = {"messages": []}

        await store.put(NAMESPACE, "k", value)
        value["messages"].append("x")
        item = await store.get(NAMESPACE, "k")
        item.value["messages"].append("y")

        assert (await store.get(NAMESPACE, "k")).value == {"messages": []}

    @pytest.mark.asyncio
    async def test_overwrite_keeps_created_at(self):
        store = InMemoryStore()

        await store.put(NAMESPACE, "k", {"v": 1})
        first = await store.get(NAMESPACE, "k")
        await store.put(NAMESPACE, "k", {"v": 2})
        second = await store.get(NAMESPACE, "k")

        assert second.value == {"v": 2}
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_namespaces_isolated(self):
        store = InMemoryStore()

        await store.put(("rmm", "u1", "buffer"), "k", {"v": 1})

        assert await store.get(("rmm", "u2", "buffer"), "k") is None
        assert await store.get(("rmm", "u1", "buffer", "staging"), "k") is None


class TestSQLiteStoreConnection:
    """Tests for SQLite store connection."""

    @pytest.mark.asyncio
    async def test_connect_creates_database(self, storage_config):
        """Test that connecting creates the database file."""
        store = SQLiteStore(storage_config)

        assert not storage_config.sqlite_path.exists()

        await store.connect()

        assert storage_config.sqlite_path.exists()
        assert await store.is_connected()

        await store.disconnect()

        assert not await store.is_connected()

    @pytest.mark.asyncio
    async def test_context_manager(self, storage_config):
        """Test using the store as async context manager."""
        async with SQLiteStore(storage_config) as store:
            assert await store.is_connected()

        assert not await store.is_connected()

    @pytest.mark.asyncio
    async def test_requires_connection(self, storage_config):
        store = SQLiteStore(storage_config)

        with pytest.raises(StorageError):
            await store.get(NAMESPACE, "reranker")
        with pytest.raises(StorageError):
            await store.put(NAMESPACE, "reranker", {})


class TestSQLiteStoreCRUD:
    """Tests for SQLite reads and writes."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, sqlite_store):
        value = {"weights": {"queryTransform": [[1.0, 0.5], [0.25, 1.0]]}, "updatedAt": 1}

        await sqlite_store.put(NAMESPACE, "reranker", value)
        item = await sqlite_store.get(NAMESPACE, "reranker")

        assert item.value == value
        assert item.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_missing_key(self, sqlite_store):
        assert await sqlite_store.get(NAMESPACE, "reranker") is None

    @pytest.mark.asyncio
    async def test_upsert_keeps_created_at(self, sqlite_store):
        await sqlite_store.put(NAMESPACE, "k", {"v": 1})
        first = await sqlite_store.get(NAMESPACE, "k")
        await sqlite_store.put(NAMESPACE, "k", {"v": 2})
        second = await sqlite_store.get(NAMESPACE, "k")

        assert second.value == {"v": 2}
        assert second.created_at == first.created_at
        assert second.updated_at - first.updated_at >= timedelta(0)

    @pytest.mark.asyncio
    async def test_namespaces_isolated(self, sqlite_store):
        await sqlite_store.put(("rmm", "u1", "buffer"), "message-buffer", {"v": 1})

        assert await sqlite_store.get(("rmm", "u2", "buffer"), "message-buffer") is None
        assert await sqlite_store.get(("rmm", "u1", "buffer", "staging"), "message-buffer") is None

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, storage_config):
        async with SQLiteStore(storage_config) as store:
            await store.put(NAMESPACE, "reranker", {"v": 1})

        async with SQLiteStore(storage_config) as store:
            item = await store.get(NAMESPACE, "reranker")

        assert item.value == {"v": 1}


@pytest.fixture
def chroma_index(storage_config):
    embedder = FakeEmbedder(
        {
            "hiking": [1.0, 0.0, 0.0, 0.0],
            "SPEAKER_1 enjoys hiking.": [0.9, 0.1, 0.0, 0.0],
            "SPEAKER_1 owns a cat.": [0.0, 0.0, 1.0, 0.0],
        }
    )
    index = ChromaMemoryIndex(embedder, storage_config, client=chromadb.EphemeralClient())
    index.connect()
    return index


def memory_document(memory_id: str, summary: str) -> Document:
    return Document(
        page_content=summary,
        metadata={
            "id": memory_id,
            "sessionId": "s-1",
            "timestamp": 1_700_000_000_000,
            "turnReferences": [0, 2],
            "rawDialogue": f"SPEAKER_1: {summary}",
        },
    )


class TestChromaMemoryIndex:
    """Tests for the ChromaDB memory bank."""

    @pytest.mark.asyncio
    async def test_requires_connection(self, storage_config):
        index = ChromaMemoryIndex(FakeEmbedder(), storage_config)

        with pytest.raises(StorageError):
            await index.asimilarity_search("hiking")

    @pytest.mark.asyncio
    async def test_empty_collection(self, chroma_index):
        assert await chroma_index.asimilarity_search("hiking", k=5) == []

    @pytest.mark.asyncio
    async def test_add_and_search(self, chroma_index):
        await chroma_index.aadd_documents(
            [
                memory_document("cat", "SPEAKER_1 owns a cat."),
                memory_document("hike", "SPEAKER_1 enjoys hiking."),
            ]
        )

        matches = await chroma_index.asimilarity_search_with_relevance_scores("hiking", k=2)

        assert [doc.metadata["id"] for doc, _ in matches] == ["hike", "cat"]
        assert matches[0][1] > matches[1][1]
        assert matches[0][0].metadata["turnReferences"] == [0, 2]
        assert chroma_index.count() == 2

    @pytest.mark.asyncio
    async def test_upsert_and_delete(self, chroma_index):
        await chroma_index.aadd_documents([memory_document("hike", "SPEAKER_1 enjoys hiking.")])
        await chroma_index.aadd_documents(
            [memory_document("hike", "SPEAKER_1 owns a cat.")], ids=["hike"]
        )

        assert chroma_index.count() == 1
        docs = await chroma_index.asimilarity_search("hiking", k=1)
        assert docs[0].page_content == "SPEAKER_1 owns a cat."

        assert await chroma_index.adelete(ids=["hike"]) is True
        assert chroma_index.count() == 0
