"""
Candidate retrieval over the memory bank.

The memory bank is any object exposing the async LangChain vector store
methods used here, so a ``langchain_core.vectorstores.VectorStore`` works
as-is and ``ChromaMemoryIndex`` is the bundled implementation.

Relevance-scored search is preferred. Stores that cannot score fall back
to plain similarity search with no score.

Retrieval never raises. An unavailable or misbehaving index degrades to
an empty candidate list, which callers treat as "nothing similar".
"""

import logging
from typing import Any, Protocol, Sequence, runtime_checkable

from langchain_core.documents import Document

from reflective_memory.models.memory import MemoryEntry, RetrievedMemory


@runtime_checkable
class MemoryIndex(Protocol):
    """Async similarity index over memory documents."""

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs: Any) -> list[Document]:
        ...

    async def aadd_documents(self, documents: list[Document], **kwargs: Any) -> list[str]:
        ...


class CandidateRetrieval:
    """Fetch ranked memory candidates from the index."""

    def __init__(self, index: MemoryIndex, logger: logging.Logger | None = None):
        self.index = index
        self.logger = logger or logging.getLogger(__name__)

    async def _scored_search(self, query: str, k: int) -> list[tuple[Document, float]] | None:
        """
        Relevance-scored hits, or None when the index cannot score.

        ``VectorStore`` always defines the scored method, but the base
        implementation raises for stores without a relevance function.
        """
        scored = getattr(self.index, "asimilarity_search_with_relevance_scores", None)
        if not callable(scored):
            return None
        try:
            matches = await scored(query, k=k)
            return [(doc, float(score)) for doc, score in matches]
        except Exception as e:
            self.logger.debug(f"Scored search unavailable, using plain similarity search: {e}")
            return None

    async def _search(self, query: str, k: int) -> list[RetrievedMemory]:
        pairs: Sequence[tuple[Document, float | None]] | None = await self._scored_search(query, k)
        if pairs is None:
            docs = await self.index.asimilarity_search(query, k=k)
            pairs = [(doc, None) for doc in docs]

        return [
            RetrievedMemory.from_document(doc, position, score)
            for position, (doc, score) in enumerate(pairs[:k])
        ]

    async def retrieve_for_query(self, query: str, k: int) -> list[RetrievedMemory]:
        """
        Top-k memories for free text, most similar first.

        Returns [] for a blank query or any index failure.
        """
        if not query or not query.strip() or k <= 0:
            return []

        try:
            return await self._search(query, k)
        except Exception as e:
            self.logger.warning(f"Memory index search failed, continuing without candidates: {e}")
            return []

    async def retrieve_similar(self, memory: MemoryEntry, k: int = 5) -> list[RetrievedMemory]:
        """Memories similar to ``memory``, searched by its topic summary."""
        return await self.retrieve_for_query(memory.topic_summary, k)
