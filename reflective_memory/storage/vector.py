"""
Memory bank backed by ChromaDB.

Exposes the async vector store methods the retrieval and consolidation
components call, so it can stand in for any LangChain vector store.
"""

import json
from typing import Any

import chromadb
from chromadb.config import Settings
from langchain_core.documents import Document
from ulid import ULID

from reflective_memory.config import StorageConfig
from reflective_memory.encoding.embedder import BaseEmbedder
from reflective_memory.storage.base import StorageError


def _to_chroma_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma only stores scalars; lists are kept as JSON strings."""
    flat = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            flat[key] = json.dumps(value)
        else:
            flat[key] = value
    return flat


def _from_chroma_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    result = dict(metadata or {})
    references = result.get("turnReferences")
    if isinstance(references, str):
        try:
            result["turnReferences"] = json.loads(references)
        except json.JSONDecodeError:
            result["turnReferences"] = []
    return result


class ChromaMemoryIndex:
    """
    ChromaDB collection holding memory documents.

    Documents are embedded with the configured embedder; the similarity
    space is cosine, so relevance = 1 - distance.
    """

    def __init__(
        self,
        embedder: BaseEmbedder,
        storage_config: StorageConfig | None = None,
        client: Any = None,
    ):
        """
        Initialize the memory index.

        Args:
            embedder: Provider used for documents and queries
            storage_config: Storage configuration
            client: Existing chromadb client (e.g. ``chromadb.EphemeralClient()``)
        """
        self.embedder = embedder
        self.storage_config = storage_config or StorageConfig()
        self._client = client
        self._collection = None

    def connect(self) -> None:
        """Open the persistent client and the memory collection."""
        try:
            if self._client is None:
                persist_dir = self.storage_config.chroma_persist_directory
                persist_dir.mkdir(parents=True, exist_ok=True)

                self._client = chromadb.PersistentClient(
                    path=str(persist_dir),
                    settings=Settings(
                        anonymized_telemetry=False,
                        allow_reset=True,
                    ),
                )

            self._collection = self._client.get_or_create_collection(
                name=self.storage_config.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise StorageError(f"Could not open Chroma collection {self.storage_config.collection_name}: {e}") from e

    def _ensure_connected(self):
        if self._collection is None:
            raise StorageError("Memory index used before connect()")
        return self._collection

    async def aadd_documents(self, documents: list[Document], **kwargs: Any) -> list[str]:
        """Embed and upsert documents. Existing ids are overwritten."""
        collection = self._ensure_connected()
        if not documents:
            return []

        ids = kwargs.get("ids") or [
            doc.id or doc.metadata.get("id") or str(ULID()) for doc in documents
        ]
        embeddings = await self.embedder.embed_batch([doc.page_content for doc in documents])

        collection.upsert(
            ids=ids,
            embeddings=embeddings,
            documents=[doc.page_content for doc in documents],
            metadatas=[_to_chroma_metadata({**doc.metadata, "id": i}) for doc, i in zip(documents, ids)],
        )
        return ids

    async def adelete(self, ids: list[str] | None = None, **kwargs: Any) -> bool:
        collection = self._ensure_connected()
        if not ids:
            return False
        collection.delete(ids=ids)
        return True

    async def asimilarity_search_with_relevance_scores(
        self, query: str, k: int = 4, **kwargs: Any
    ) -> list[tuple[Document, float]]:
        collection = self._ensure_connected()
        count = collection.count()
        if count == 0:
            return []

        query_embedding = await self.embedder.embed(query)
        results = collection.query(
            query_embeddings=[query_embedding],
            n_results=min(k, count),
            include=["documents", "metadatas", "distances"],
        )

        matches = []
        for doc_id, text, metadata, distance in zip(
            results["ids"][0],
            results["documents"][0],
            results["metadatas"][0],
            results["distances"][0],
        ):
            document = Document(
                page_content=text or "",
                metadata=_from_chroma_metadata(metadata),
                id=doc_id,
            )
            matches.append((document, 1.0 - float(distance)))

        return matches

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs: Any) -> list[Document]:
        matches = await self.asimilarity_search_with_relevance_scores(query, k=k)
        return [doc for doc, _ in matches]

    def count(self) -> int:
        return self._ensure_connected().count()
